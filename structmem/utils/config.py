"""
Configuration management for the model capability, storage and memory settings.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv

load_dotenv()


def _default_db_path() -> str:
    """Resolve the local database file under the user's data directory."""
    data_home = os.getenv('XDG_DATA_HOME') or os.path.join(os.path.expanduser('~'), '.local', 'share')
    return os.path.join(data_home, 'structmem', 'memory.json')


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float


@dataclass
class StorageConfig:
    """Configuration for the key-value storage boundary."""
    backend: str  # 'local' or 'dynamodb'
    path: str
    table_name: str
    region: str
    endpoint_url: Optional[str] = None


@dataclass
class MemoryConfig:
    """Configuration for memory resolution and expiry."""
    scan_limit: int
    recall_limit: int
    sample_key_limit: int
    default_intent: str
    category_ttls: Dict[str, str] = field(default_factory=dict)


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    storage: StorageConfig
    memory: MemoryConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-5-haiku-20241022-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '2048')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.0')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')))

    # Storage configuration
    storage_config = StorageConfig(backend=os.getenv('STRUCTMEM_STORAGE_BACKEND', 'local').lower(),
                                   path=os.getenv('STRUCTMEM_DB_PATH', _default_db_path()),
                                   table_name=os.getenv('STRUCTMEM_TABLE', 'memories'),
                                   region=os.getenv('STRUCTMEM_DYNAMODB_REGION', 'us-east-1'),
                                   endpoint_url=os.getenv('STRUCTMEM_DYNAMODB_ENDPOINT') or None)

    # Memory configuration
    memory_config = MemoryConfig(scan_limit=int(os.getenv('STRUCTMEM_SCAN_LIMIT', '1000')),
                                 recall_limit=int(os.getenv('STRUCTMEM_RECALL_LIMIT', '20')),
                                 sample_key_limit=int(os.getenv('STRUCTMEM_SAMPLE_KEYS', '20')),
                                 default_intent=os.getenv('STRUCTMEM_DEFAULT_INTENT', 'remember').lower(),
                                 category_ttls={
                                     'scratchpad': os.getenv('STRUCTMEM_SCRATCHPAD_TTL', '24h'),
                                     'sessions': os.getenv('STRUCTMEM_SESSIONS_TTL', '7d'),
                                     'interactions': os.getenv('STRUCTMEM_INTERACTIONS_TTL', '90d'),
                                 })

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'stdio'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     storage=storage_config,
                     memory=memory_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
