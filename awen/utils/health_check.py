"""
Health check utilities for the application.
"""

from typing import Any, Dict, Optional

from .bedrock_llm import BedrockLLM
from .config import config
from .logging_config import get_logger
from .opensearch_client import OpenSearchClient

logger = get_logger(__name__)


def get_health_status(llm: Optional[BedrockLLM] = None, store: Optional[Any] = None) -> Dict[str, Any]:
    """Get detailed health status of all components.

    Returns:
        Dictionary with health status of each component
    """
    health_status = {}

    # Check Bedrock LLM
    try:
        llm = llm or BedrockLLM(config.bedrock_llm)
        health_status['bedrock_llm'] = {
            'healthy': llm.health_check(),
            'service': 'Amazon Bedrock LLM',
            'model': config.bedrock_llm.lite_model_id
        }
    except Exception as e:
        logger.error(f'Bedrock LLM health probe failed: {e}')
        health_status['bedrock_llm'] = {'healthy': False, 'service': 'Amazon Bedrock LLM', 'error': str(e)}

    # Check the session store
    if store is not None:
        try:
            health_status['store'] = {
                'healthy': store.health_check(),
                'service': type(store).__name__,
                'persistent': bool(getattr(store, 'available', True))
            }
        except Exception as e:
            logger.error(f'Store health probe failed: {e}')
            health_status['store'] = {'healthy': False, 'service': type(store).__name__, 'error': str(e)}
    elif config.storage.backend == 'opensearch':
        try:
            opensearch = OpenSearchClient(config.opensearch)
            health_status['opensearch'] = {
                'healthy': opensearch.health_check(),
                'service': 'Amazon OpenSearch',
                'endpoint': config.opensearch.endpoint
            }
        except Exception as e:
            logger.error(f'OpenSearch health probe failed: {e}')
            health_status['opensearch'] = {'healthy': False, 'service': 'Amazon OpenSearch', 'error': str(e)}

    return health_status


def get_system_info() -> Dict[str, Any]:
    """Get system information and configuration.

    Returns:
        Dictionary with system information
    """
    return {
        'service_name': 'Awen',
        'version': '0.1.0',
        'configuration': {
            'primary_model': config.bedrock_llm.primary_model_id,
            'lite_model': config.bedrock_llm.lite_model_id,
            'storage_backend': config.storage.backend,
            'pattern_stale_days': config.memory.pattern_stale_days,
            'aws_region': config.bedrock_llm.region
        }
    }
