"""
Execution of resolved query plans with a single broadening fallback.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..models.query import ExactLookup, IndexLookup, PartitionScan, ResolvedQuery, describe_plan, unreachable
from ..utils.logging_config import get_logger
from ..utils.store import IndexNotFoundError, MemoryStore
from ..utils.timestamp_utils import utc_now
from .expiry import filter_expired

logger = get_logger(__name__)


@dataclass
class ExecutionResult:
    """Documents returned for a plan, with the plan that actually produced them."""
    items: List[Dict[str, Any]]
    plan: ResolvedQuery
    fell_back: bool = False
    attempted: List[ResolvedQuery] = field(default_factory=list)


class QueryExecutor:
    """Run a ResolvedQuery against the store and filter expired items."""

    def __init__(self, store: MemoryStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    def run(self, plan: ResolvedQuery, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Execute one plan as-is, without fallback or expiry filtering."""
        if isinstance(plan, IndexLookup):
            try:
                return self.store.query_index(plan.index_name, plan.key_value, limit=limit)
            except IndexNotFoundError:
                logger.warning(f'Index {plan.index_name} disappeared before lookup')
                return []
        if isinstance(plan, PartitionScan):
            return self.store.scan(plan.category, prefix=plan.key_prefix, limit=limit)
        if isinstance(plan, ExactLookup):
            document = self.store.get(plan.category, plan.key)
            return [document] if document is not None else []
        unreachable(plan)

    def fetch(self, plan: ResolvedQuery, limit: Optional[int] = None, include_expired: bool = False,
              now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Execute one plan and return at most `limit` live documents.

        The store is read without a limit when expired documents are being
        dropped, so expired ones never take the place of live ones.
        """
        if include_expired:
            return self.run(plan, limit)
        items = filter_expired(self.run(plan), now or self.clock())
        return items[:limit] if limit is not None else items

    def execute(self, plan: ResolvedQuery, limit: Optional[int] = None, include_expired: bool = False,
                now: Optional[datetime] = None) -> ExecutionResult:
        """Execute a plan, broadening at most once to a full scan of the same category.

        Expired items are removed before deciding whether the plan found anything,
        so a plan whose only matches have expired still falls back.

        Args:
            plan: Plan to run
            limit: Maximum number of documents returned
            include_expired: Keep expired documents (diagnostics)
            now: Reference time for expiry (defaults to the executor clock)

        Returns:
            ExecutionResult; items may be empty, which is not an error
        """
        now = now or self.clock()
        items = self.fetch(plan, limit, include_expired, now)
        attempted = [plan]

        if items or self._is_full_scan(plan):
            return ExecutionResult(items=items, plan=plan, attempted=attempted)

        broadened = PartitionScan(category=plan.category)
        logger.info(f'No results for {describe_plan(plan)}; falling back to {describe_plan(broadened)}')
        items = self.fetch(broadened, limit, include_expired, now)
        attempted.append(broadened)
        return ExecutionResult(items=items, plan=broadened, fell_back=True, attempted=attempted)

    @staticmethod
    def _is_full_scan(plan: ResolvedQuery) -> bool:
        return isinstance(plan, PartitionScan) and plan.is_full_scan
