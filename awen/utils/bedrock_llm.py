"""
Amazon Bedrock client for the primary and lite conversation models.

Responses are read from ``converse_stream``. Throttling and transport errors
are retried when ``retry_attempts`` allows it; request errors such as a bad
model id or missing access fail immediately.
"""

import random
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockLLMConfig
from .logging_config import get_logger

logger = get_logger(__name__)

NON_RETRYABLE_ERRORS = ('ValidationException', 'AccessDeniedException', 'ResourceNotFoundException')


class BedrockLLMError(Exception):
    """Custom exception for Bedrock LLM errors."""
    pass


def read_converse_stream(stream: Optional[Iterable[Dict[str, Any]]]) -> Tuple[str, Optional[Dict[str, Any]]]:
    """Concatenate text deltas and collect usage metadata from a converse stream."""
    text = ''
    metrics = None

    for event in stream or []:
        if 'contentBlockDelta' in event:
            text += event['contentBlockDelta']['delta'].get('text', '')
        if 'metadata' in event:
            metrics = {**event['metadata'].get('usage', {}), **event['metadata'].get('metrics', {})}

    return text, metrics


class BedrockLLM:
    """Bedrock runtime client serving both model variants."""

    def __init__(self, config: BedrockLLMConfig):
        """
        Initialize Bedrock LLM client.

        Args:
            config: BedrockLLMConfig with region, model ids and generation defaults
        """
        self.config = config

        self.bedrock_runtime = boto3.client('bedrock-runtime',
                                            region_name=config.region,
                                            config=BotoConfig(connect_timeout=60, read_timeout=300, retries={'max_attempts': 0}))

        logger.info(f'Initialized Bedrock LLM client (primary: {config.primary_model_id}, lite: {config.lite_model_id})')

    def generate_response(self,
                          messages: List[Dict[str, Any]],
                          system_prompt: str,
                          model_id: Optional[str] = None,
                          max_tokens: Optional[int] = None,
                          temperature: Optional[float] = None,
                          stop_sequences: Optional[List[str]] = None) -> Tuple[str, Optional[Dict[str, Any]]]:
        """
        Generate a response from one of the configured models.

        Args:
            messages: Alternating user/assistant turns in Bedrock converse format
            system_prompt: System prompt for the conversation
            model_id: Model to invoke (uses the primary model if None)
            max_tokens: Maximum tokens to generate (uses config default if None)
            temperature: Temperature for generation (uses config default if None)
            stop_sequences: Stop sequences for generation

        Returns:
            Tuple of (response_text, invoke_metrics)

        Raises:
            BedrockLLMError: If the request fails or the model returns no text
        """
        model_id = model_id or self.config.primary_model_id
        attempts = max(self.config.retry_attempts, 1)
        inference_config = {
            'maxTokens': max_tokens or self.config.max_tokens,
            'temperature': self.config.temperature if temperature is None else temperature,
            'stopSequences': stop_sequences or [],
        }

        for attempt in range(1, attempts + 1):
            try:
                logger.debug(f'Bedrock request to {model_id} ({attempt}/{attempts})')
                response = self.bedrock_runtime.converse_stream(modelId=model_id,
                                                                messages=messages,
                                                                system=[{'text': system_prompt}],
                                                                inferenceConfig=inference_config)
                text, metrics = read_converse_stream(response.get('stream'))

            except ClientError as e:
                code = e.response.get('Error', {}).get('Code', '')
                if code in NON_RETRYABLE_ERRORS or attempt == attempts:
                    logger.error(f'Bedrock request to {model_id} failed with {code}: {e}')
                    raise BedrockLLMError(f'Bedrock request failed: {e}')
                logger.warning(f'Bedrock request to {model_id} failed with {code}, retrying: {e}')

            except BotoCoreError as e:
                if attempt == attempts:
                    logger.error(f'Bedrock transport error for {model_id}: {e}')
                    raise BedrockLLMError(f'Bedrock transport error: {e}')
                logger.warning(f'Bedrock transport error for {model_id}, retrying: {e}')

            else:
                if not text.strip():
                    raise BedrockLLMError(f'Empty response from {model_id}')
                logger.debug(f'Bedrock response from {model_id} ({len(text)} chars)')
                return text, metrics

            # Exponential backoff with jitter
            time.sleep(self.config.retry_delay * (2**(attempt - 1)) + random.uniform(0, 1))

        raise BedrockLLMError(f'Bedrock request to {model_id} failed after {attempts} attempts')

    def health_check(self) -> bool:
        """
        Send a minimal prompt to the lite model.

        Returns:
            True if the model answered, False otherwise
        """
        try:
            self.generate_response(messages=[{'role': 'user', 'content': [{'text': 'Hi'}]}],
                                   system_prompt="Respond with just 'OK'.",
                                   model_id=self.config.lite_model_id,
                                   max_tokens=10,
                                   temperature=0.0)
            return True

        except BedrockLLMError as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
