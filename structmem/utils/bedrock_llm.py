"""
Language-model capability: the narrow LLMClient interface and its Amazon Bedrock implementation.
"""

import json
import random
import time
from abc import ABC, abstractmethod
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockLLMConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class BedrockLLMError(Exception):
    """Custom exception for Bedrock LLM errors."""
    pass


class LLMUnavailableError(Exception):
    """Raised when no credentials are configured for the language-model capability."""
    pass


class LLMClient(ABC):
    """Text-in/text-out completion capability used for inference, parsing and answers."""

    @abstractmethod
    def complete(self, system_prompt: str, user_content: str) -> str:
        """Generate a completion for a system prompt and a single user message."""

    def ensure_available(self) -> None:
        """Raise LLMUnavailableError now if the capability cannot be used."""

    def health_check(self) -> bool:
        """
        Perform a health check on the LLM service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.complete("You are a helpful assistant. Respond with just 'OK'.", 'Hi')
            return len(response.strip()) > 0

        except Exception as e:
            logger.error(f'LLM health check failed: {e}')
            return False


class BedrockLLM(LLMClient):
    """Amazon Bedrock LLM client with retry logic and error handling."""

    def __init__(self, config: BedrockLLMConfig, session: Optional[boto3.Session] = None):
        """
        Initialize Bedrock LLM client.

        Args:
            config: BedrockLLMConfig instance with connection parameters
            session: Optional boto3 session (defaults to the ambient credential chain)

        Raises:
            LLMUnavailableError: If no AWS credentials can be resolved
        """
        self.config = config
        self.model_id = config.model_id

        session = session or boto3.Session()
        if session.get_credentials() is None:
            raise LLMUnavailableError('No AWS credentials found for Amazon Bedrock. '
                                      'Configure AWS_ACCESS_KEY_ID/AWS_SECRET_ACCESS_KEY or an AWS profile.')

        # Create Bedrock runtime client with timeout configuration
        self.bedrock_runtime = session.client(
            'bedrock-runtime',
            region_name=config.region,
            config=BotoConfig(
                connect_timeout=60,
                read_timeout=300,
                retries={'max_attempts': 0}  # We handle retries manually
            ))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    def complete(self, system_prompt: str, user_content: str) -> str:
        """
        Generate a completion using Bedrock LLM with retry logic.

        Args:
            system_prompt: System prompt for the conversation
            user_content: The single user message

        Returns:
            Response text

        Raises:
            BedrockLLMError: If all retry attempts fail or the model returns nothing
        """
        messages = [{'role': 'user', 'content': [{'text': user_content}]}]
        system = [{'text': system_prompt}]
        inf_params = {
            'maxTokens': self.config.max_tokens,
            'temperature': self.config.temperature,
        }

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock LLM request attempt {attempt + 1}/{self.config.retry_attempts}')

                stream = self.bedrock_runtime.converse_stream(modelId=self.model_id,
                                                              messages=messages,
                                                              system=system,
                                                              inferenceConfig=inf_params).get('stream')

                msg = ''
                if stream:
                    for event in stream:
                        if 'contentBlockDelta' in event:
                            msg += event['contentBlockDelta']['delta'].get('text', '')

                if not msg.strip():
                    raise BedrockLLMError('Model returned empty response')

                logger.debug(f'Bedrock LLM response generated successfully (length: {len(msg)})')
                return msg

            except (ClientError, BotoCoreError, json.JSONDecodeError) as e:
                logger.warning(f'Bedrock LLM attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts: {e}')

        raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts')


class LazyBedrockLLM(LLMClient):
    """Defers building the Bedrock client until the first completion.

    Operations that never reach the model never need credentials; the first one
    that does raises LLMUnavailableError at that point.
    """

    def __init__(self, config: BedrockLLMConfig):
        self.config = config
        self._client: Optional[BedrockLLM] = None

    @property
    def client(self) -> BedrockLLM:
        if self._client is None:
            self._client = BedrockLLM(self.config)
        return self._client

    def complete(self, system_prompt: str, user_content: str) -> str:
        return self.client.complete(system_prompt, user_content)

    def ensure_available(self) -> None:
        if self._client is None:
            self._client = BedrockLLM(self.config)
