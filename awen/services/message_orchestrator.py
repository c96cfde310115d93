"""
Message orchestration: sequences the memory services for one incoming message.

The orchestrator is the composition root. It constructs every service once
around a shared CompletionService and KeyValueStore, and any failure during
``process_message`` is converted into a single low-confidence fallback reply.
"""

import time
from typing import Any, Dict, List, Optional, Sequence

from ..models.core import (FALLBACK_MODEL, PLACEHOLDER_GENERATOR, PROMPT_GENERATOR, ActionLog, ActionType, Message, ModelVariant,
                           Operation, OptimizationRecord, ProcessResult, Role)
from ..models.memory import ContextualReasoning, ConversationPattern
from ..utils.config import AppConfig, config
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import elapsed_ms, now
from .completion import CompletionError, CompletionService
from .contextual_reasoning import ContextualReasoningEngine
from .memory_insights import MemoryInsightAggregator
from .pattern_recognition import PatternRecognitionEngine
from .preference_learning import UserPreferenceLearning
from .storage import KeyValueStore, build_store
from .style_adaptation import CommunicationStyleAdapter
from .workflow_continuation import WorkflowContinuation

logger = get_logger(__name__)

FALLBACK_REPLY = ('I apologize, but I encountered an error processing your request. '
                  'Could you please try rephrasing your message?')
FALLBACK_CONFIDENCE = 0.3
RETURNED_PATTERNS = 5
RETURNED_SUGGESTIONS = 3
SNAPSHOT_PATTERNS = 10
FEEDBACK_TYPES = ('response_quality', 'prediction_accuracy', 'style_preference')

IMAGE_PROMPT_TEMPLATE = """
The user wants to generate an image with this request: "{input}"

Recent conversation context:
{context}

Generate a detailed, creative image prompt that would be suitable for an AI image generator like DALL-E or Midjourney.

The prompt should be:
- Descriptive and specific
- Include artistic style, mood, lighting, composition details
- Be suitable for generating a high-quality image
- Take into account the conversation context if relevant

Format your response as:
**Image Prompt:**
[Your detailed image generation prompt here]

**Style:** [Brief description of the artistic style/approach]

**Notes:** [Any additional context about why you chose this prompt]"""

CLARIFICATION_TEMPLATE = """
The user said: "{input}"

Recent conversation context:
{context}

This input seems ambiguous or needs clarification. Generate a helpful clarification question that:
1. References relevant context from the conversation
2. Offers specific options when possible
3. Is friendly and encouraging

Generate only the clarification question, no explanation:"""


class MessageOrchestrator:
    """Run the conversation-intelligence pipeline for each user message."""

    def __init__(self,
                 llm: Optional[CompletionService] = None,
                 store: Optional[KeyValueStore] = None,
                 app_config: Optional[AppConfig] = None):
        """Initialize the orchestrator and its services.

        Args:
            llm: CompletionService shared by all services (created if None)
            store: KeyValueStore for patterns and preferences (built from config if None)
            app_config: AppConfig instance, uses default if None
        """
        self.app_config = app_config or config
        self.llm = llm or CompletionService(llm_config=self.app_config.bedrock_llm)
        self.store = store or build_store(self.app_config)

        self.pattern_engine = PatternRecognitionEngine(self.llm, self.store, self.app_config.memory)
        self.insight_aggregator = MemoryInsightAggregator(self.llm)
        self.style_adapter = CommunicationStyleAdapter(self.llm)
        self.preference_learning = UserPreferenceLearning(self.store, self.app_config.memory)
        self.reasoning_engine = ContextualReasoningEngine(self.llm)
        self.workflow = WorkflowContinuation(self.llm)
        logger.info('Initialized MessageOrchestrator')

    def process_message(self, content: str, session_id: str, history: Optional[Sequence[Message]] = None) -> ProcessResult:
        """Process one user message end to end.

        Args:
            content: User message text
            session_id: Session the message belongs to
            history: Prior messages of the session, oldest first

        Returns:
            ProcessResult; a fallback bundle with empty auxiliary data on any failure
        """
        start = time.time()
        history = list(history or [])

        try:
            return self._process(content, session_id, history, start)
        except CompletionError as e:
            logger.error(f'Completion error while processing message for session {session_id}: {e}')
        except Exception as e:
            logger.error(f'Unexpected error while processing message for session {session_id}: {e}')

        return self.fallback_result(start)

    def fallback_result(self, start: float) -> ProcessResult:
        message = Message.create(Role.ASSISTANT,
                                 FALLBACK_REPLY,
                                 intent=ActionType.TEXT,
                                 confidence=FALLBACK_CONFIDENCE,
                                 model_used=FALLBACK_MODEL,
                                 processing_time=elapsed_ms(start))
        return ProcessResult(message=message)

    def _process(self, content: str, session_id: str, history: List[Message], start: float) -> ProcessResult:
        existing_patterns = self.pattern_engine.load_patterns(session_id)

        intent = self.llm.classify_intent(content, history)

        if history:
            patterns = self.merge_patterns(self.pattern_engine.analyze_conversation(history), existing_patterns)
        else:
            patterns = existing_patterns

        insights = self.insight_aggregator.generate_memory_insights(patterns, history[-self.app_config.memory.max_context_messages:])
        style = self.style_adapter.detect_communication_style(history)

        existing_profile = self.preference_learning.load_preference_profile(session_id)
        learning = self.preference_learning.analyze_user_preferences(history, existing_profile)
        all_preferences = learning.new_preferences + learning.reinforced_preferences
        strategy = self.preference_learning.generate_adaptive_strategy(all_preferences)

        reasoning: Optional[ContextualReasoning] = None
        optimization: Optional[OptimizationRecord] = None
        action = intent.intent
        model_used = self.llm.model_id(ModelVariant.PRIMARY)

        if intent.intent in (ActionType.IMAGE, ActionType.IMAGE_PROMPT):
            response_content = self.generate_image_prompt(content, history)
            action = ActionType.IMAGE_PROMPT
        elif intent.intent == ActionType.CONTEXTUAL_REASONING or patterns:
            result = self.reasoning_engine.execute_contextual_reasoning(content, history, patterns)
            response_content = result.response
            reasoning = result.reasoning
            action = result.action_type
        elif intent.intent == ActionType.CLARIFY:
            response_content = self.generate_clarification_request(content, history)
        else:
            adaptation = self.style_adapter.adapt_response_style(content, style, content)
            enhanced_prompt = (f'{adaptation.adapted_prompt}\n\n'
                               'User Preference Context:\n'
                               f'- Response Style: {strategy.response_style}\n'
                               f'- Content Focus: {", ".join(strategy.content_focus)}\n'
                               f'- Communication Approach: {strategy.communication_approach}\n'
                               f'- Learned Preferences: {len(learning.new_preferences)} new, '
                               f'{len(learning.reinforced_preferences)} reinforced\n\n'
                               'Adapt your response to match these learned preferences while maintaining helpfulness.')
            response = self.llm.generate_text(enhanced_prompt,
                                              history=history,
                                              model=ModelVariant.PRIMARY,
                                              operation=Operation.RESPONSE_GENERATION)
            response_content = response.content
            model_used = response.model
            optimization = response.optimization

        if action == ActionType.IMAGE_PROMPT:
            model_used = PROMPT_GENERATOR
        elif action == ActionType.IMAGE:
            model_used = PLACEHOLDER_GENERATOR

        processing_time = elapsed_ms(start)

        if learning.new_preferences or learning.reinforced_preferences:
            profile = self.preference_learning.build_profile(session_id, learning, existing_profile, trigger=content)
            self.preference_learning.save_preference_profile(profile)

        action_log = ActionLog(
            timestamp=now(),
            action=action,
            input=content,
            output=response_content,
            model_used=model_used,
            confidence=intent.confidence,
            processing_time=processing_time,
            contextual_reasoning=reasoning,
            memory_insights=insights,
            conversation_patterns=list(patterns),
            reasoning_chain=[
                f'1. Loaded {len(existing_patterns)} conversation patterns',
                f'2. Classified intent as "{intent.intent.value}" ({round(intent.confidence * 100)}% confidence)',
                f'3. {intent.reasoning}',
                f'4. Analyzed conversation and found {len(patterns)} patterns',
                f'5. Generated memory insights: {insights.communication_style.value} style, '
                f'{len(insights.topic_interests)} interests',
                f'6. Detected communication style: {style.name.value} ({round(style.confidence * 100)}% confidence)',
                f'7. Learned user preferences: {len(learning.new_preferences)} new, '
                f'{len(learning.reinforced_preferences)} reinforced',
                f'8. Adaptive strategy: {strategy.response_style} style, {strategy.communication_approach} approach',
                f'9. Applied {"contextual reasoning" if action == ActionType.CONTEXTUAL_REASONING else "preference-aware response generation"}',
                f'10. Used model: {model_used}',
                f'11. Generated response in {processing_time}ms',
            ],
            optimization=optimization)

        response_message = Message.create(Role.ASSISTANT,
                                          response_content,
                                          is_image=action in (ActionType.IMAGE, ActionType.IMAGE_PROMPT),
                                          intent=action,
                                          confidence=intent.confidence,
                                          model_used=model_used,
                                          processing_time=processing_time,
                                          action_log=action_log)

        user_message = Message.create(Role.USER, content)
        patterns = self.pattern_engine.update_patterns(user_message, response_message, patterns)

        continuation = self.workflow.generate_continuation_suggestions(history, patterns, insights)

        self.pattern_engine.save_patterns(session_id, patterns)

        logger.debug(f'Processed message for session {session_id} as {action.value} in {processing_time}ms')
        return ProcessResult(message=response_message,
                             action_log=action_log,
                             memory_insights=insights,
                             patterns=patterns[:RETURNED_PATTERNS],
                             predictive_insights=list(reasoning.hypothetical_next) if reasoning else [],
                             workflow_suggestions=continuation.suggestions[:RETURNED_SUGGESTIONS],
                             conversation_state=continuation.conversation_state,
                             next_best_actions=continuation.next_best_actions)

    def merge_patterns(self, analyzed: Sequence[ConversationPattern],
                       existing: Sequence[ConversationPattern]) -> List[ConversationPattern]:
        """Freshly analyzed patterns first, then persisted ones not describing the same thing."""
        seen = {p.pattern.strip().lower() for p in analyzed}
        return list(analyzed) + [p for p in existing if p.pattern.strip().lower() not in seen]

    def generate_image_prompt(self, input_text: str, history: Sequence[Message]) -> str:
        context = '\n'.join(f'{m.role.value}: {m.content[:150]}' for m in list(history)[-3:])
        prompt = IMAGE_PROMPT_TEMPLATE.format(input=input_text, context=context)

        try:
            return self.llm.generate_text(prompt, model=ModelVariant.PRIMARY, temperature=0.8).content
        except CompletionError as e:
            logger.warning(f'Image prompt generation failed, using template: {e}')
            return (f'**Image Prompt:**\n{input_text}\n\n'
                    '**Style:** Photorealistic, high quality, detailed\n\n'
                    f'**Notes:** Generated a basic prompt based on your request: "{input_text}"')

    def generate_clarification_request(self, input_text: str, history: Sequence[Message]) -> str:
        context = '\n'.join(f'{m.role.value}: {m.content}' for m in list(history)[-2:])
        prompt = CLARIFICATION_TEMPLATE.format(input=input_text, context=context)

        try:
            return self.llm.generate_text(prompt, model=ModelVariant.LITE, temperature=0.6).content
        except CompletionError as e:
            logger.warning(f'Clarification generation failed, using template: {e}')
            return f'Could you provide more details about "{input_text}"? I\'d like to help you in the best way possible.'

    def get_memory_insights(self, session_id: str) -> Dict[str, Any]:
        """Insight snapshot for a session's persisted patterns."""
        try:
            patterns = self.pattern_engine.load_patterns(session_id)
            insights = self.insight_aggregator.generate_memory_insights(patterns, [])
            return {'patterns': patterns[:SNAPSHOT_PATTERNS], 'insights': insights, 'pattern_count': len(patterns)}
        except Exception as e:
            logger.error(f'Failed to build memory insights for session {session_id}: {e}')
            return {'patterns': [], 'insights': None, 'pattern_count': 0}

    def get_conversation_patterns(self, session_id: str) -> List[ConversationPattern]:
        return self.pattern_engine.load_patterns(session_id)

    def get_predictive_insights(self, session_id: str) -> List[str]:
        try:
            patterns = self.pattern_engine.load_patterns(session_id)
            return self.reasoning_engine.generate_predictive_insights(patterns)
        except Exception as e:
            logger.error(f'Failed to generate predictive insights for session {session_id}: {e}')
            return ["Continue the conversation with any topic you'd like"]

    def reason_about_intent(self, content: str, session_id: str, history: Optional[Sequence[Message]] = None) -> ContextualReasoning:
        patterns = self.pattern_engine.load_patterns(session_id)
        return self.reasoning_engine.reason_about_intent(content, list(history or []), patterns)

    def get_user_preferences(self, session_id: str) -> Dict[str, Any]:
        profile = self.preference_learning.load_preference_profile(session_id)
        return {'profile': profile, 'has_preferences': bool(profile and profile.preferences)}

    def record_feedback(self, message_id: str, helpful: bool, feedback_type: str) -> Dict[str, Any]:
        """Acknowledge user feedback on a message. Feedback is logged, not applied.

        Raises:
            ValueError: If the feedback type is unknown
        """
        if feedback_type not in FEEDBACK_TYPES:
            raise ValueError(f'Unknown feedback type: {feedback_type}')

        logger.info(f'User feedback received for message {message_id}: {feedback_type}, helpful={helpful}')
        return {'success': True, 'message': 'Feedback recorded successfully'}
