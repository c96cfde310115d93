"""
Contextual reasoning over the current input, recent history and known patterns.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

from ..models.core import ActionType, Message, ModelVariant, Role
from ..models.memory import ContextualReasoning, ConversationFlow, ConversationPattern, PatternType
from ..utils.json_utils import JSONSalvageError, clamp, parse_llm_json
from ..utils.logging_config import get_logger
from .completion import CompletionError, CompletionService

logger = get_logger(__name__)

MAX_HYPOTHETICAL_INTENTS = 3
MAX_PREDICTED_NEEDS = 3
MIN_CONFIDENCE = 0.2
MAX_CONFIDENCE = 0.95
NO_PATTERN_CONFIDENCE = 0.4
IMAGE_ACTION_KEYWORDS = ('image', 'generate', 'create', 'draw', 'design', 'visualize')
CLARIFY_ACTION_KEYWORDS = ('what', 'how')

CANNED_IMAGE_RESPONSE = ('**Image Prompt:**\nA beautiful, high-quality image based on your request\n\n'
                         '**Style:** Photorealistic, detailed\n\n'
                         '**Notes:** This is a contextual reasoning fallback - the main AI should generate a more specific prompt.')
DEFAULT_PREDICTION = "Continue the conversation with any topic you'd like to explore"

REASONING_PROMPT = """
Analyze the user's intent based on conversation history and detected patterns:

Current user input: "{input}"

Recent conversation:
{history}

User patterns:
{patterns}

Provide contextual reasoning in JSON format:
{{
  "userIntent": "inferred intent description",
  "confidence": 0.0-1.0,
  "reasoning": "explanation of how you reached this conclusion",
  "hypotheticalNext": ["prediction1", "prediction2", "prediction3"],
  "conversationFlow": "continuation|topic_shift|clarification_needed"
}}

Focus on understanding what the user really wants based on their patterns and conversation flow."""

PREDICTION_PROMPT = """
Based on these user patterns, predict what they might want to do next:

Patterns:
{patterns}

Generate 3-5 helpful predictions as a JSON array:
["prediction 1", "prediction 2", "prediction 3"]

Make predictions specific and actionable based on the user's established patterns."""

CONTEXTUAL_RESPONSE_PROMPT = """
Generate a helpful response to the user's input, taking into account their patterns and conversation context.

User input: "{input}"

User's communication style/preferences: {style}

Recent conversation context:
{context}

Predicted user needs: {needs}

Guidelines:
- Adapt your response to match the user's communication style
- Reference relevant conversation context when helpful
- Be proactive in offering assistance based on predicted needs
- Keep response natural and conversational
- Don't explicitly mention the patterns you're using

Generate a helpful, contextually-aware response:"""


@dataclass
class ContextAnalysis:
    topic: str
    sentiment: str
    complexity: float
    recent_flow: str


@dataclass
class ContextualReasoningResult:
    response: str
    reasoning: ContextualReasoning
    action_type: ActionType
    confidence: float
    processing_steps: List[str] = field(default_factory=list)


def fallback_response(input_text: str) -> str:
    return f'I understand you\'re asking about "{input_text}". Let me help you with that.'


def _pattern_keywords(pattern: ConversationPattern) -> List[str]:
    return [word for word in pattern.pattern.lower().split(' ') if word]


class ContextualReasoningEngine:
    """Infer what the user wants from input, history and patterns, then respond."""

    def __init__(self, llm: CompletionService):
        self.llm = llm
        logger.info('Initialized ContextualReasoningEngine')

    def reason_about_intent(self, input_text: str, history: Sequence[Message],
                            patterns: Sequence[ConversationPattern]) -> ContextualReasoning:
        """Ask the model for a structured reading of the user's intent.

        Args:
            input_text: Current user input
            history: Conversation history, oldest first
            patterns: Known conversation patterns

        Returns:
            ContextualReasoning; a fixed fallback record when the call or its JSON fails
        """
        history = list(history)
        patterns = list(patterns)

        history_context = '\n'.join(f'{m.role.value}: {m.content}' for m in history[-5:])
        pattern_context = '\n'.join(f'{p.type.value}: {p.pattern} (confidence: {p.confidence})'
                                    for p in patterns) if patterns else 'No patterns detected yet'
        prompt = REASONING_PROMPT.format(input=input_text, history=history_context, patterns=pattern_context)

        try:
            response = self.llm.generate_text(prompt, model=ModelVariant.PRIMARY, temperature=0.4)
            parsed = parse_llm_json(response.content, opener='{')
            if not isinstance(parsed, dict):
                raise JSONSalvageError('Reasoning response is not an object')
            return self.parse_reasoning_response(parsed, patterns)

        except (CompletionError, JSONSalvageError) as e:
            logger.warning(f'Contextual reasoning failed, using fallback reasoning: {e}')
            return self.fallback_reasoning(input_text, history, patterns)

    def generate_predictive_insights(self, patterns: Sequence[ConversationPattern]) -> List[str]:
        """Predict what the user might do next from their patterns."""
        patterns = list(patterns)
        if not patterns:
            return [DEFAULT_PREDICTION]

        prompt = PREDICTION_PROMPT.format(patterns='\n'.join(f'{p.type.value}: {p.pattern}' for p in patterns))

        try:
            response = self.llm.generate_text(prompt, model=ModelVariant.LITE, temperature=0.6)
        except CompletionError as e:
            logger.warning(f'Prediction generation failed: {e}')
            return self.fallback_predictions(patterns)

        try:
            predictions = parse_llm_json(response.content, opener='[')
        except JSONSalvageError as e:
            logger.debug(f'Prediction parse failed: {e}')
            return ['Continue the conversation', 'Ask questions', 'Explore new topics']

        if not isinstance(predictions, list):
            return ['Continue the conversation', 'Ask questions', 'Explore new topics']
        return [str(p) for p in predictions if p]

    def execute_contextual_reasoning(self, input_text: str, history: Sequence[Message],
                                     patterns: Sequence[ConversationPattern]) -> ContextualReasoningResult:
        """Run the full reasoning pipeline and produce a response.

        Steps: analyze context, select relevant patterns, derive hypothetical
        intents, predict needs, then respond by action type.

        Args:
            input_text: Current user input
            history: Conversation history, oldest first
            patterns: Known conversation patterns

        Returns:
            ContextualReasoningResult with response text, reasoning record,
            action type and the processing steps taken
        """
        history = list(history)
        patterns = list(patterns)
        steps: List[str] = []

        try:
            steps.append('Analyzing conversation context')
            context = self.analyze_conversation_context(history)

            steps.append(f'Applied {len(patterns)} conversation patterns')
            relevant = self.identify_relevant_patterns(input_text, patterns)

            steps.append('Generating hypothetical user intents')
            intents = self.generate_hypothetical_intents(input_text, relevant)

            steps.append('Predicting user needs based on patterns')
            needs = self.predict_user_needs(history)

            steps.append('Generating contextually-aware response')
            response, action_type = self.generate_contextual_response(input_text, needs, relevant, history)

            reasoning = ContextualReasoning(user_intent=intents[0] if intents else input_text,
                                            confidence=self.calculate_contextual_confidence(relevant, context),
                                            reasoning=self.build_reasoning_explanation(relevant, needs),
                                            based_on=relevant,
                                            hypothetical_next=needs,
                                            conversation_flow=self.determine_conversation_flow(history, input_text))

            return ContextualReasoningResult(response=response,
                                             reasoning=reasoning,
                                             action_type=action_type,
                                             confidence=reasoning.confidence,
                                             processing_steps=steps)

        except Exception as e:
            logger.error(f'Unexpected error during contextual reasoning: {e}')
            steps.append('Fallback to basic reasoning')
            return ContextualReasoningResult(response=fallback_response(input_text),
                                             reasoning=self.fallback_reasoning(input_text, history, patterns),
                                             action_type=ActionType.TEXT,
                                             confidence=0.5,
                                             processing_steps=steps)

    def analyze_conversation_context(self, history: Sequence[Message]) -> ContextAnalysis:
        if not history:
            return ContextAnalysis(topic='new conversation', sentiment='neutral', complexity=0.5, recent_flow='starting')

        recent = list(history)[-3:]
        last_user = next((m for m in reversed(recent) if m.role == Role.USER), None)
        return ContextAnalysis(topic=' '.join(last_user.content.split(' ')[:3]) if last_user else 'general',
                               sentiment='neutral',
                               complexity=0.7 if len(recent) > 2 else 0.4,
                               recent_flow='ongoing' if len(recent) > 1 else 'starting')

    def identify_relevant_patterns(self, input_text: str, patterns: Sequence[ConversationPattern]) -> List[ConversationPattern]:
        lowered = input_text.lower()
        return [
            p for p in patterns
            if p.type == PatternType.COMMUNICATION_STYLE or any(keyword in lowered for keyword in _pattern_keywords(p))
        ]

    def generate_hypothetical_intents(self, input_text: str, relevant_patterns: Sequence[ConversationPattern]) -> List[str]:
        intents = [input_text]
        for pattern in relevant_patterns:
            if pattern.type == PatternType.INTENT_SEQUENCE:
                intents.append(f'Continue {pattern.pattern} workflow')
            elif pattern.type == PatternType.PREFERENCE:
                intents.append(f'Apply {pattern.pattern} preference')
        return intents[:MAX_HYPOTHETICAL_INTENTS]

    def predict_user_needs(self, history: Sequence[Message]) -> List[str]:
        predictions = []
        last_assistant = next((m for m in reversed(list(history)) if m.role == Role.ASSISTANT), None)
        if last_assistant is not None and last_assistant.is_image:
            predictions.append('Generate variations or modifications of the image')
            predictions.append('Create related visual content')

        predictions.append('Ask follow-up questions for clarification')
        predictions.append('Request additional details or examples')
        return predictions[:MAX_PREDICTED_NEEDS]

    def determine_action_type(self, input_text: str, relevant_patterns: Sequence[ConversationPattern]) -> ActionType:
        lowered = input_text.lower()
        if any(keyword in lowered for keyword in IMAGE_ACTION_KEYWORDS):
            return ActionType.IMAGE
        if len(input_text.strip()) < 10 or any(keyword in lowered for keyword in CLARIFY_ACTION_KEYWORDS):
            return ActionType.CLARIFY
        if relevant_patterns:
            return ActionType.CONTEXTUAL_REASONING
        return ActionType.TEXT

    def generate_contextual_response(self, input_text: str, needs: Sequence[str], relevant_patterns: Sequence[ConversationPattern],
                                     history: Sequence[Message]) -> Tuple[str, ActionType]:
        action_type = self.determine_action_type(input_text, relevant_patterns)
        if action_type == ActionType.IMAGE:
            return CANNED_IMAGE_RESPONSE, action_type

        style_guidance = ', '.join(
            p.pattern for p in relevant_patterns if p.type in (PatternType.COMMUNICATION_STYLE, PatternType.PREFERENCE))
        prompt = CONTEXTUAL_RESPONSE_PROMPT.format(input=input_text,
                                                   style=style_guidance or 'No specific style detected',
                                                   context='\n'.join(f'{m.role.value}: {m.content}' for m in list(history)[-3:]),
                                                   needs=', '.join(needs))

        try:
            response = self.llm.generate_text(prompt, model=ModelVariant.PRIMARY, temperature=0.7)
            return response.content, action_type
        except CompletionError as e:
            logger.warning(f'Contextual response generation failed: {e}')
            return fallback_response(input_text), ActionType.TEXT

    def determine_conversation_flow(self, history: Sequence[Message], input_text: str) -> ConversationFlow:
        if not history:
            return ConversationFlow.CLARIFICATION_NEEDED
        if self.is_topic_related(history[-1].content, input_text):
            return ConversationFlow.CONTINUATION
        return ConversationFlow.TOPIC_SHIFT

    def is_topic_related(self, previous_content: str, current_input: str) -> bool:
        current_words = set(current_input.lower().split(' '))
        return any(len(word) > 3 and word in current_words for word in previous_content.lower().split(' '))

    def calculate_contextual_confidence(self, relevant_patterns: Sequence[ConversationPattern], context: ContextAnalysis) -> float:
        if not relevant_patterns:
            return NO_PATTERN_CONFIDENCE

        average = sum(p.confidence for p in relevant_patterns) / len(relevant_patterns)
        adjustment = 0.1 if context.complexity > 0.5 else -0.1
        return min(max(average + adjustment, MIN_CONFIDENCE), MAX_CONFIDENCE)

    def build_reasoning_explanation(self, relevant_patterns: Sequence[ConversationPattern], needs: Sequence[str]) -> str:
        if not relevant_patterns:
            return 'No established patterns yet, using general conversation approach'

        pattern_types = ', '.join(p.type.value for p in relevant_patterns)
        return f'Based on {len(relevant_patterns)} detected patterns ({pattern_types}), predicting user may need: {", ".join(needs)}'

    def parse_reasoning_response(self, parsed: Dict[str, Any], patterns: Sequence[ConversationPattern]) -> ContextualReasoning:
        try:
            flow = ConversationFlow(str(parsed.get('conversationFlow') or 'continuation').strip().lower())
        except ValueError:
            flow = ConversationFlow.CONTINUATION

        hypothetical = parsed.get('hypotheticalNext')
        return ContextualReasoning(user_intent=str(parsed.get('userIntent') or 'General conversation'),
                                   confidence=clamp(parsed.get('confidence', 0.5), default=0.5),
                                   reasoning=str(parsed.get('reasoning') or 'Basic analysis'),
                                   based_on=list(patterns),
                                   hypothetical_next=[str(h) for h in hypothetical] if isinstance(hypothetical, list) else [],
                                   conversation_flow=flow)

    def fallback_reasoning(self, input_text: str, history: Sequence[Message],
                           patterns: Sequence[ConversationPattern]) -> ContextualReasoning:
        return ContextualReasoning(
            user_intent=input_text or 'General conversation',
            confidence=NO_PATTERN_CONFIDENCE,
            reasoning='Fallback reasoning due to analysis error',
            based_on=list(patterns),
            hypothetical_next=['Continue conversation', 'Provide assistance'],
            conversation_flow=ConversationFlow.CONTINUATION if history else ConversationFlow.CLARIFICATION_NEEDED)

    def fallback_predictions(self, patterns: Sequence[ConversationPattern]) -> List[str]:
        if any('image' in p.pattern for p in patterns):
            return ['Generate more images', 'Modify existing images', 'Explore visual concepts']
        return ['Continue the conversation', 'Ask follow-up questions', 'Explore related topics']
