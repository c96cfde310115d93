"""
Completion service: the single entry point to the text-completion capability.

Every model call in the pipeline goes through ``CompletionService.generate_text``,
which trims history, builds the operation prompt, picks a model variant when
the caller does not force one, and reports the optimization applied.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from ..models.core import ActionType, IntentClassification, Message, ModelVariant, Operation, OptimizationRecord, Role
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import BedrockLLMConfig, config
from ..utils.json_utils import JSONSalvageError, clamp, parse_llm_json
from ..utils.logging_config import get_logger
from .token_optimizer import TokenOptimizer

logger = get_logger(__name__)

IMAGE_INTENT_KEYWORDS = ('image', 'picture', 'generate', 'create', 'design', 'visualize')


class CompletionError(Exception):
    """Custom exception for completion failures (transport, quota or empty output)."""
    pass


@dataclass
class CompletionResponse:
    content: str
    model: str
    tokens_used: Optional[int] = None
    optimization: Optional[OptimizationRecord] = None


class CompletionService:
    """Text generation over the primary and lite Bedrock model variants."""

    def __init__(self,
                 llm: Optional[BedrockLLM] = None,
                 optimizer: Optional[TokenOptimizer] = None,
                 llm_config: Optional[BedrockLLMConfig] = None):
        """Initialize the completion service.

        Args:
            llm: Bedrock client (created from configuration if None)
            optimizer: TokenOptimizer instance (created if None)
            llm_config: BedrockLLMConfig instance, uses default if None
        """
        self.llm_config = llm_config or config.bedrock_llm
        self.llm = llm or BedrockLLM(self.llm_config)
        self.optimizer = optimizer or TokenOptimizer(self.llm_config)
        logger.info('Initialized CompletionService')

    def model_id(self, variant: ModelVariant) -> str:
        return self.llm_config.lite_model_id if variant == ModelVariant.LITE else self.llm_config.primary_model_id

    def generate_text(self,
                      prompt: str,
                      history: Optional[Sequence[Message]] = None,
                      model: Optional[ModelVariant] = None,
                      temperature: Optional[float] = None,
                      max_tokens: Optional[int] = None,
                      operation: Operation = Operation.RESPONSE_GENERATION) -> CompletionResponse:
        """Generate a completion for a prompt and optional prior turns.

        Args:
            prompt: Prompt text sent as the final user turn
            history: Prior conversation turns, oldest first
            model: Model variant to force (selected by complexity if None)
            temperature: Sampling temperature (uses config default if None)
            max_tokens: Output size cap (uses config default if None)
            operation: Operation kind, drives prompt templating and model selection

        Returns:
            CompletionResponse with the generated text

        Raises:
            CompletionError: If the model call fails
        """
        history = list(history or [])

        history_optimization = self.optimizer.optimize_conversation_history(history)
        prompt_optimization = self.optimizer.create_optimized_prompt(operation,
                                                                     prompt,
                                                                     history_optimization.messages,
                                                                     user_style=self.optimizer.detect_user_style(history))

        complexity = self.optimizer.calculate_complexity(prompt, history)
        estimated_tokens = self.optimizer.estimate_text_tokens(prompt_optimization.content)
        selection = self.optimizer.select_optimal_model(operation, complexity, estimated_tokens)

        model_id = self.model_id(model) if model is not None else selection.model_id
        messages = self._format_messages(history_optimization.messages, prompt)

        try:
            content, metrics = self.llm.generate_response(messages=messages,
                                                          system_prompt=self.llm_config.system_prompt,
                                                          model_id=model_id,
                                                          max_tokens=max_tokens,
                                                          temperature=temperature)
        except BedrockLLMError as e:
            logger.error(f'Completion failed for {operation.value}: {e}')
            raise CompletionError(f'Failed to generate text: {e}')

        tokens_used = None
        if metrics:
            tokens_used = metrics.get('totalTokens')

        optimization = OptimizationRecord(
            strategy=f'{history_optimization.strategy} + {selection.reasoning}',
            tokens_saved=history_optimization.tokens_saved,
            estimated_cost=selection.estimated_cost,
            reasoning=f'{prompt_optimization.strategy}: {round(prompt_optimization.compression_ratio * 100)}% compression')

        logger.debug(f'Generated {len(content)} chars with {model_id} for {operation.value}')
        return CompletionResponse(content=content, model=model_id, tokens_used=tokens_used, optimization=optimization)

    def classify_intent(self, input_text: str, history: Optional[Sequence[Message]] = None) -> IntentClassification:
        """Classify the intent of a user message.

        Falls back to keyword rules when the model call or its JSON fails.

        Args:
            input_text: Current user input
            history: Prior conversation turns

        Returns:
            IntentClassification
        """
        history = list(history or [])
        context = '\n'.join(f'{m.role.value}: {m.content}' for m in history[-3:]) if history else 'No previous context'

        prompt = f"""
Analyze the user's input and conversation history to determine their intent.

User input: "{input_text}"

Previous conversation context: {context}

Classify the intent as one of:
- "text": User wants text-based response, explanation, conversation
- "image": User explicitly wants image generation (contains words like "create image", "generate picture", "show me visually", "design", "visualize")
- "image_prompt": User wants an image prompt for use with external AI image generators
- "clarify": Input is ambiguous and needs clarification
- "contextual_reasoning": Complex request that requires understanding conversation patterns and context

Respond in JSON format:
{{
  "intent": "...",
  "confidence": 0.0-1.0,
  "reasoning": "Brief explanation of classification"
}}"""  # noqa: E501

        try:
            response = self.generate_text(prompt, model=ModelVariant.PRIMARY, temperature=0.3)
            result = parse_llm_json(response.content, opener='{')
            if not isinstance(result, dict):
                raise JSONSalvageError('Intent classification is not an object')

            return IntentClassification(intent=self._parse_intent(result.get('intent')),
                                        confidence=clamp(result.get('confidence'), default=0.5) or 0.5,
                                        reasoning=str(result.get('reasoning') or 'Default classification'))

        except (CompletionError, JSONSalvageError) as e:
            logger.warning(f'Intent classification failed, using keyword fallback: {e}')
            lowered = input_text.lower()
            if any(keyword in lowered for keyword in IMAGE_INTENT_KEYWORDS):
                return IntentClassification(intent=ActionType.IMAGE,
                                            confidence=0.7,
                                            reasoning='Keyword-based classification (fallback)')

            return IntentClassification(intent=ActionType.TEXT, confidence=0.6, reasoning='Fallback classification')

    def _parse_intent(self, value: Any) -> ActionType:
        try:
            return ActionType(str(value).strip().lower())
        except ValueError:
            return ActionType.TEXT

    def _format_messages(self, history: Sequence[Message], prompt: str) -> List[Dict[str, Any]]:
        """Convert history and prompt into Bedrock converse messages.

        Image messages are skipped, consecutive turns of one role are merged and
        the conversation always starts and ends with a user turn.
        """
        turns: List[Dict[str, Any]] = []
        for message in list(history) + [Message(id='prompt', role=Role.USER, content=prompt)]:
            if message.is_image or not message.content.strip():
                continue
            if not turns and message.role != Role.USER:
                continue

            if turns and turns[-1]['role'] == message.role.value:
                turns[-1]['content'][0]['text'] += f'\n\n{message.content}'
            else:
                turns.append({'role': message.role.value, 'content': [{'text': message.content}]})

        return turns
