"""
MCP Interface Layer using fastmcp for agent orchestration.
"""
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from .models.query import Remember, describe_plan
from .services.memory_management import MemoryManagementError, MemoryManagementService, RecallResult
from .utils.config import config
from .utils.health_check import get_system_info
from .utils.logging_config import get_logger

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Structured Memory')
_memory_service: Optional[MemoryManagementService] = None


def get_memory_service() -> MemoryManagementService:
    global _memory_service
    if _memory_service is None:
        _memory_service = MemoryManagementService()
    return _memory_service


def _recall_payload(result: RecallResult) -> Dict[str, Any]:
    return {
        'items': result.items,
        'plan': describe_plan(result.plan) if result.plan is not None else None,
        'fell_back': result.fell_back,
    }


@mcp.tool()
def remember(content: Optional[str] = None,
             category: Optional[str] = None,
             key: Optional[str] = None,
             ttl: Optional[str] = None,
             data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Store a memory.

    Args:
        content: Natural language to store (ignored when data is given)
        category: Target category; chosen automatically when omitted
        key: Sort key for the memory
        ttl: Time to live such as '24h', '7d' or '2w'
        data: Structured attributes to store as-is, without a model

    Returns:
        The stored document
    """
    try:
        if not data and not (content and content.strip()):
            raise MemoryManagementError('Either content or data is required')
        item = get_memory_service().remember(data if data else content, category=category, key=key, ttl=ttl)
        logger.debug(f'MCP remember stored {item.category}/{item.key}')
        return item.to_document()
    except MemoryManagementError as e:
        logger.error(f'Memory management error in MCP remember: {e}')
        raise Exception(f'Remember failed: {e}')


@mcp.tool()
def recall(category: Optional[str] = None,
           key: Optional[str] = None,
           query: Optional[str] = None,
           limit: int = 20,
           include_expired: bool = False) -> Dict[str, Any]:
    """Retrieve memories by category/key or by natural-language question.

    Returns:
        Items, the executed plan, and whether the plan was broadened to a full scan
    """
    try:
        result = get_memory_service().recall(category=category, key=key, query=query, limit=limit,
                                             include_expired=include_expired)
        logger.debug(f'MCP recall returned {len(result.items)} items')
        return _recall_payload(result)
    except MemoryManagementError as e:
        logger.error(f'Memory management error in MCP recall: {e}')
        raise Exception(f'Recall failed: {e}')


@mcp.tool()
def discover(category: Optional[str] = None, limit: Optional[int] = None) -> Any:
    """List categories, or the keys, schema and indexes of one category."""
    return get_memory_service().discover(category=category, limit=limit)


@mcp.tool()
def forget(category: str, key: str) -> Dict[str, Any]:
    """Delete a memory. Returns removed=False when it did not exist."""
    return {'category': category, 'key': key, 'removed': get_memory_service().forget(category, key)}


@mcp.tool()
def define(category: str, description: str, attributes: List[Dict[str, Any]], auto_index: bool = False) -> Dict[str, Any]:
    """Define a strict schema.

    Args:
        category: Category name (no '_' or '#')
        description: What the category stores
        attributes: List of {"name", "type" (STRING|NUMBER|BOOLEAN), "required"}
        auto_index: Index every attribute
    """
    try:
        service = get_memory_service()
        schema = service.define(category, description, attributes, auto_index=auto_index)
        payload = schema.to_dict()
        payload['indexes'] = service.indexes(schema)
        return payload
    except MemoryManagementError as e:
        logger.error(f'Memory management error in MCP define: {e}')
        raise Exception(f'Define failed: {e}')


@mcp.tool()
def schema(category: Optional[str] = None) -> Any:
    """Show one category's schema, or all schemas."""
    result = get_memory_service().schema(category)
    if isinstance(result, list):
        return [s.to_dict() for s in result]
    return result.to_dict() if result is not None else None


@mcp.tool()
def prune(category: Optional[str] = None) -> Dict[str, int]:
    """Delete expired memories in one category or all of them."""
    return {'pruned': get_memory_service().prune(category)}


@mcp.tool()
def ask(text: str) -> Dict[str, Any]:
    """Store or answer a free-form utterance, depending on its intent."""
    service = get_memory_service()
    intent, result = service.ask(text)
    if isinstance(intent, Remember):
        return {'intent': 'remember', 'item': result.to_document()}
    payload = _recall_payload(result)
    payload['intent'] = 'recall'
    payload['answer'] = service.answer(intent.query, result.items) if result.items else None
    return payload


@mcp.tool()
def health() -> Dict[str, Any]:
    """Report configuration and whether storage and the model are reachable."""
    return get_system_info(get_memory_service())


if __name__ == '__main__':
    transport = config.mcp.transport
    if transport == 'stdio':
        mcp.run(transport=transport)
    else:
        mcp.run(transport=transport, host=config.mcp.host, port=config.mcp.port)
