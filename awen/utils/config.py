"""
Configuration management for AWS services and application settings.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    primary_model_id: str
    lite_model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float
    primary_cost_per_1k_tokens: float
    lite_cost_per_1k_tokens: float
    system_prompt: str


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    index_name: str


@dataclass
class StorageConfig:
    """Configuration for the session-keyed key-value store."""
    backend: str  # none | memory | opensearch


@dataclass
class MemoryConfig:
    """Configuration for conversation memory heuristics."""
    pattern_stale_days: int
    max_context_messages: int
    learning_history_size: int


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
    opensearch: OpenSearchConfig
    storage: StorageConfig
    memory: MemoryConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(
        region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
        primary_model_id=os.getenv('BEDROCK_LLM_PRIMARY_MODEL_ID', 'anthropic.claude-3-5-sonnet-20240620-v1:0'),
        lite_model_id=os.getenv('BEDROCK_LLM_LITE_MODEL_ID', 'anthropic.claude-3-haiku-20240307-v1:0'),
        max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '2048')),
        temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.7')),
        retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '1')),
        retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')),
        primary_cost_per_1k_tokens=float(os.getenv('BEDROCK_LLM_PRIMARY_COST_PER_1K', '0.00015')),
        lite_cost_per_1k_tokens=float(os.getenv('BEDROCK_LLM_LITE_COST_PER_1K', '0.00010')),
        system_prompt=os.getenv('BEDROCK_LLM_SYSTEM_PROMPT', 'You are Awen, a helpful and attentive conversational assistant.'))

    # Key-value store configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         index_name=os.getenv('OPENSEARCH_INDEX', 'awen_session_memory'))

    storage_config = StorageConfig(backend=os.getenv('STORAGE_BACKEND', 'memory').lower())

    # Memory configuration
    memory_config = MemoryConfig(pattern_stale_days=int(os.getenv('MEMORY_PATTERN_STALE_DAYS', '7')),
                                 max_context_messages=int(os.getenv('MEMORY_MAX_CONTEXT_MESSAGES', '5')),
                                 learning_history_size=int(os.getenv('MEMORY_LEARNING_HISTORY_SIZE', '20')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     opensearch=opensearch_config,
                     storage=storage_config,
                     memory=memory_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
