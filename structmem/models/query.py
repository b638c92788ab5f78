"""
Transient values produced by the resolver and the intent classifier.

Both are closed sum types: every consumer dispatches with an isinstance chain
that ends in `unreachable()`, so a new variant fails loudly where it is not handled.
"""

from dataclasses import dataclass
from typing import NoReturn, Optional, Union


@dataclass(frozen=True)
class IndexLookup:
    """Point lookup through a registered secondary index."""
    category: str
    index_name: str
    key_value: str


@dataclass(frozen=True)
class PartitionScan:
    """Sort-key prefix scan; a full partition scan when key_prefix is None."""
    category: str
    key_prefix: Optional[str] = None

    @property
    def is_full_scan(self) -> bool:
        return not self.key_prefix


@dataclass(frozen=True)
class ExactLookup:
    """Direct get by category and sort key."""
    category: str
    key: str


ResolvedQuery = Union[IndexLookup, PartitionScan, ExactLookup]


@dataclass(frozen=True)
class Remember:
    """Store intent; content has any leading command verb stripped."""
    content: str


@dataclass(frozen=True)
class Recall:
    """Retrieve intent."""
    query: str


NlIntent = Union[Remember, Recall]


def unreachable(value: object) -> NoReturn:
    """Terminal branch of an exhaustive isinstance dispatch."""
    raise TypeError(f'Unhandled variant: {type(value).__name__}')


def describe_plan(plan: ResolvedQuery) -> str:
    """Short human-readable rendering of a plan, used in logs and JSON output."""
    if isinstance(plan, IndexLookup):
        return f'index {plan.index_name} = {plan.key_value!r}'
    if isinstance(plan, PartitionScan):
        if plan.is_full_scan:
            return f'scan {plan.category}'
        return f'scan {plan.category} begins_with {plan.key_prefix!r}'
    if isinstance(plan, ExactLookup):
        return f'get {plan.category}/{plan.key}'
    unreachable(plan)
