"""
Health check utilities for the application.
"""

from typing import Any, Dict

from .bedrock_llm import LazyBedrockLLM
from .config import config
from .logging_config import get_logger
from .store import create_store

logger = get_logger(__name__)


def get_health_status(service=None) -> Dict[str, Any]:
    """Get detailed health status of storage and the language model.

    Args:
        service: Optional MemoryManagementService whose store and model are checked;
            the configured ones are used otherwise

    Returns:
        Dictionary with health status of each component
    """
    health_status = {}

    # Check storage
    storage_service = 'DynamoDB' if config.storage.backend == 'dynamodb' else 'Local JSON store'
    try:
        store = service.store if service is not None else create_store(config.storage)
        health_status['storage'] = {
            'healthy': store.health_check(),
            'service': storage_service,
            'backend': config.storage.backend
        }
    except Exception as e:
        logger.warning(f'Storage health check failed: {e}')
        health_status['storage'] = {'healthy': False, 'service': storage_service, 'error': str(e)}

    # Check Bedrock LLM
    try:
        llm = service.llm if service is not None else LazyBedrockLLM(config.bedrock_llm)
        llm.ensure_available()
        health_status['bedrock_llm'] = {
            'healthy': llm.health_check(),
            'service': 'Amazon Bedrock LLM',
            'model': config.bedrock_llm.model_id
        }
    except Exception as e:
        logger.warning(f'Bedrock LLM health check failed: {e}')
        health_status['bedrock_llm'] = {'healthy': False, 'service': 'Amazon Bedrock LLM', 'error': str(e)}

    return health_status


def get_system_info(service=None) -> Dict[str, Any]:
    """Get system information, configuration and component health.

    Returns:
        Dictionary with system information
    """
    return {
        'service_name': 'structmem',
        'version': '1.0.0',
        'configuration': {
            'bedrock_llm_model': config.bedrock_llm.model_id,
            'storage_backend': config.storage.backend,
            'recall_limit': config.memory.recall_limit,
            'default_intent': config.memory.default_intent,
            'aws_region': config.bedrock_llm.region
        },
        'health_status': get_health_status(service)
    }
