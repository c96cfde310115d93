"""
Token optimization: history trimming, templated prompts and model-variant selection.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..models.core import Message, ModelVariant, Operation, Role
from ..utils.config import BedrockLLMConfig, config
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

MAX_CONTEXT_MESSAGES = 5
MAX_IMPORTANT_MESSAGES = 2
MAX_PATTERN_CONTEXT = 3
IMPORTANT_KEYWORDS = ('prefer', 'like', 'want', 'need', 'always', 'never', 'style')
TECHNICAL_TERMS = ('implement', 'algorithm', 'optimize', 'architecture', 'system')


@dataclass
class HistoryOptimization:
    messages: List[Message]
    strategy: str
    tokens_saved: int


@dataclass
class OptimizedPrompt:
    content: str
    original_length: int
    optimized_length: int
    compression_ratio: float
    strategy: str


@dataclass
class ModelSelection:
    variant: ModelVariant
    model_id: str
    reasoning: str
    estimated_cost: float


@dataclass
class TokenUsageMetrics:
    input_tokens: int
    output_tokens: int
    total_tokens: int
    estimated_cost: float
    optimization_savings: float


def _role_label(message: Message) -> str:
    return message.role.value


class TokenOptimizer:
    """Reduce token usage while preserving conversation context."""

    def __init__(self, llm_config: Optional[BedrockLLMConfig] = None):
        self.llm_config = llm_config or config.bedrock_llm

    def optimize_conversation_history(self, messages: Sequence[Message]) -> HistoryOptimization:
        """Keep the most recent messages plus a few important earlier ones.

        Args:
            messages: Full conversation history, oldest first

        Returns:
            HistoryOptimization with the retained messages and the estimated token savings
        """
        messages = list(messages)
        if len(messages) <= MAX_CONTEXT_MESSAGES:
            return HistoryOptimization(messages=messages, strategy='no_optimization_needed', tokens_saved=0)

        recent = messages[-MAX_CONTEXT_MESSAGES:]
        important = [m for m in messages[:-MAX_CONTEXT_MESSAGES] if self.is_high_importance_message(m)]
        optimized = important[-MAX_IMPORTANT_MESSAGES:] + recent

        tokens_saved = self.estimate_tokens(messages) - self.estimate_tokens(optimized)
        logger.debug(f'Optimized history from {len(messages)} to {len(optimized)} messages, saved ~{tokens_saved} tokens')
        return HistoryOptimization(messages=optimized, strategy='recent_plus_important', tokens_saved=max(tokens_saved, 0))

    def create_optimized_prompt(self,
                                operation: Operation,
                                input_text: str,
                                history: Optional[Sequence[Message]] = None,
                                patterns: Optional[Sequence[str]] = None,
                                user_style: Optional[str] = None) -> OptimizedPrompt:
        """Build a compact prompt for one operation kind.

        Args:
            operation: Which templated prompt to build
            input_text: Current user input
            history: Conversation history (already optimized)
            patterns: Known pattern descriptions, used for pattern analysis
            user_style: Detected user style label

        Returns:
            OptimizedPrompt with compression statistics
        """
        history = list(history or [])

        if operation == Operation.INTENT_CLASSIFICATION:
            content = self._intent_classification_prompt(input_text, history)
            strategy = 'minimal_context_classification'
        elif operation == Operation.PATTERN_ANALYSIS:
            content = self._pattern_analysis_prompt(history, patterns)
            strategy = 'focused_pattern_detection'
        else:
            content = self._response_generation_prompt(input_text, history, user_style)
            strategy = 'contextual_response_optimization'

        original_length = len(input_text) + len(' '.join(m.content for m in history))
        optimized_length = len(content)
        compression_ratio = optimized_length / original_length if original_length > 0 else 1.0

        return OptimizedPrompt(content=content,
                               original_length=original_length,
                               optimized_length=optimized_length,
                               compression_ratio=compression_ratio,
                               strategy=strategy)

    def select_optimal_model(self, operation: Operation, complexity_score: float, token_count: int) -> ModelSelection:
        """Pick the cheaper variant for simple work and the primary one otherwise."""
        if operation == Operation.INTENT_CLASSIFICATION and complexity_score < 0.5:
            return ModelSelection(variant=ModelVariant.LITE,
                                  model_id=self.llm_config.lite_model_id,
                                  reasoning='Simple intent classification - using cost-efficient lite model',
                                  estimated_cost=self.calculate_cost(token_count, ModelVariant.LITE))

        if token_count < 200 and complexity_score < 0.7:
            return ModelSelection(variant=ModelVariant.LITE,
                                  model_id=self.llm_config.lite_model_id,
                                  reasoning='Short context, moderate complexity - lite model sufficient',
                                  estimated_cost=self.calculate_cost(token_count, ModelVariant.LITE))

        return ModelSelection(variant=ModelVariant.PRIMARY,
                              model_id=self.llm_config.primary_model_id,
                              reasoning='Complex reasoning or long context - using primary model',
                              estimated_cost=self.calculate_cost(token_count, ModelVariant.PRIMARY))

    def estimate_tokens(self, messages: Sequence[Message]) -> int:
        # Roughly four characters per token
        return self.estimate_text_tokens(''.join(m.content for m in messages))

    def estimate_text_tokens(self, text: str) -> int:
        return math.ceil(len(text) / 4)

    def calculate_usage_metrics(self, input_tokens: int, output_tokens: int, original_input_tokens: int,
                                variant: ModelVariant) -> TokenUsageMetrics:
        total_tokens = input_tokens + output_tokens
        estimated_cost = self.calculate_cost(total_tokens, variant)
        original_cost = self.calculate_cost(original_input_tokens + output_tokens, variant)
        return TokenUsageMetrics(input_tokens=input_tokens,
                                 output_tokens=output_tokens,
                                 total_tokens=total_tokens,
                                 estimated_cost=estimated_cost,
                                 optimization_savings=original_cost - estimated_cost)

    def calculate_cost(self, tokens: int, variant: ModelVariant) -> float:
        rate = self.llm_config.lite_cost_per_1k_tokens if variant == ModelVariant.LITE else self.llm_config.primary_cost_per_1k_tokens
        return (tokens / 1000) * rate

    def calculate_complexity(self, input_text: str, history: Sequence[Message]) -> float:
        """Hand-tuned complexity score in [0, 1] from length, questions, technical terms and history size."""
        score = min(len(input_text) / 500, 0.3)
        score += min(input_text.count('?') * 0.1, 0.2)
        lowered = input_text.lower()
        score += min(sum(1 for term in TECHNICAL_TERMS if term in lowered) * 0.15, 0.3)
        score += min(len(history) * 0.05, 0.2)
        return min(score, 1.0)

    def detect_user_style(self, history: Sequence[Message]) -> str:
        if len(history) < 3:
            return 'casual'

        user_messages = [m for m in history if m.role == Role.USER]
        if not user_messages:
            return 'casual'
        avg_length = sum(len(m.content) for m in user_messages) / len(user_messages)

        if avg_length > 100:
            return 'detailed'
        if avg_length < 30:
            return 'brief'
        return 'casual'

    def is_high_importance_message(self, message: Message) -> bool:
        content = message.content.lower()
        if any(keyword in content for keyword in IMPORTANT_KEYWORDS):
            return True
        return message.is_image or (message.confidence is not None and message.confidence > 0.8)

    def _intent_classification_prompt(self, input_text: str, history: List[Message]) -> str:
        recent_context = '\n'.join(f'{_role_label(m)}: {m.content[:100]}' for m in history[-2:])
        context_line = f'Context: {recent_context}' if recent_context else ''
        return (f'Classify intent for: "{input_text}"\n'
                f'{context_line}\n'
                'Respond: {"intent":"text|image|clarify|contextual_reasoning","confidence":0.0-1.0}')

    def _pattern_analysis_prompt(self, history: List[Message], patterns: Optional[Sequence[str]]) -> str:
        recent = '\n'.join(f'{_role_label(m)}: {m.content[:150]}' for m in history[-MAX_PATTERN_CONTEXT:])
        known = f'Known: {", ".join(list(patterns)[:3])}' if patterns else ''
        return (f'Analyze patterns in: {recent}\n'
                f'{known}\n'
                'Find: preferences, style, interests. JSON format.')

    def _response_generation_prompt(self, input_text: str, history: List[Message], style: Optional[str]) -> str:
        context = '\n'.join(f'{_role_label(m)}: {m.content[:200]}' for m in history[-3:])
        parts = []
        if style:
            parts.append(f'Style: {style}')
        if context:
            parts.append(f'Context: {context}')
        parts.append(f'User: {input_text}')
        parts.append('Respond helpfully:')
        return '\n'.join(parts)
