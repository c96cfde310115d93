from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from awen.models.core import Message, Role
from awen.services.completion import CompletionService
from awen.services.storage import InMemoryStore
from awen.services.token_optimizer import TokenOptimizer
from awen.utils.bedrock_llm import BedrockLLMError
from awen.utils.config import config
from awen.utils.timestamp_utils import now

# Substrings that identify each prompt sent to the model
INTENT_PROMPT = 'Classify the intent as one of'
PATTERN_PROMPT = 'Analyze this conversation to identify user patterns'
INSIGHT_PROMPT = 'generate user insights'
STYLE_PROMPT = 'Analyze communication style in'
REASONING_PROMPT = 'Provide contextual reasoning in JSON format'
PREDICTION_PROMPT = 'predict what they might want to do next'
CONTEXTUAL_RESPONSE_PROMPT = "Generate a helpful response to the user's input"
FOLLOW_UP_PROMPT = 'Suggest 2-3 natural follow-up questions'
IMAGE_PROMPT = 'The user wants to generate an image'
CLARIFICATION_PROMPT = 'This input seems ambiguous'
PREFERENCE_PROMPT = 'User Preference Context'

ALL_PROMPTS = (INTENT_PROMPT, PATTERN_PROMPT, INSIGHT_PROMPT, STYLE_PROMPT, REASONING_PROMPT, PREDICTION_PROMPT,
               CONTEXTUAL_RESPONSE_PROMPT, FOLLOW_UP_PROMPT, IMAGE_PROMPT, CLARIFICATION_PROMPT, PREFERENCE_PROMPT)


class FakeBedrockLLM:
    """Replies keyed on substrings of the final user turn."""

    def __init__(self, replies: Optional[Dict[str, str]] = None, default: str = 'OK', fail: bool = False,
                 fail_on: Sequence[str] = ()):
        self.replies = dict(replies or {})
        self.default = default
        self.fail = fail
        self.fail_on = tuple(fail_on)
        self.calls: List[Dict[str, Any]] = []

    def generate_response(self,
                          messages,
                          system_prompt,
                          model_id=None,
                          max_tokens=None,
                          temperature=None,
                          stop_sequences=None) -> Tuple[str, Optional[Dict[str, Any]]]:
        prompt = messages[-1]['content'][0]['text']
        self.calls.append({'prompt': prompt, 'messages': messages, 'model_id': model_id, 'temperature': temperature})

        if self.fail or any(marker in prompt for marker in self.fail_on):
            raise BedrockLLMError('simulated model failure')

        for marker, reply in self.replies.items():
            if marker in prompt:
                return reply, {'inputTokens': 30, 'outputTokens': 12, 'totalTokens': 42}
        return self.default, {'inputTokens': 30, 'outputTokens': 12, 'totalTokens': 42}

    def health_check(self) -> bool:
        return not self.fail

    def prompts_containing(self, marker: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if marker in call['prompt']]


@pytest.fixture
def fake_llm() -> FakeBedrockLLM:
    return FakeBedrockLLM()


@pytest.fixture
def make_completion():

    def _make(llm: FakeBedrockLLM) -> CompletionService:
        return CompletionService(llm=llm, optimizer=TokenOptimizer(config.bedrock_llm), llm_config=config.bedrock_llm)

    return _make


@pytest.fixture
def completion(fake_llm, make_completion) -> CompletionService:
    return make_completion(fake_llm)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def conversation():
    """Build a message list from (role, content) pairs; roles are 'user' or 'assistant'."""

    def _build(*turns: Tuple[str, str], is_image_last_assistant: bool = False) -> List[Message]:
        messages = []
        start = now() - timedelta(minutes=len(turns))
        for index, (role, content) in enumerate(turns):
            is_image = is_image_last_assistant and role == 'assistant' and index == len(turns) - 1
            messages.append(
                Message(id=f'msg_{index}',
                        role=Role(role),
                        content=content,
                        timestamp=start + timedelta(minutes=index),
                        is_image=is_image))
        return messages

    return _build
