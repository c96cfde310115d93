"""
Memory insight aggregation: projects the current patterns into one snapshot.
"""

from typing import Any, Dict, List, Sequence

from ..models.core import Message, ModelVariant, Operation
from ..models.memory import ConversationPattern, IntentPattern, MemoryInsight, PatternType, StyleName
from ..utils.json_utils import JSONSalvageError, clamp, parse_llm_json
from ..utils.logging_config import get_logger
from .completion import CompletionError, CompletionService

logger = get_logger(__name__)

RECENT_CONTEXT_MESSAGES = 5
INTENT_SEQUENCE_SEPARATOR = ' -> '

INSIGHT_PROMPT = """
Based on detected conversation patterns and recent context, generate user insights:

Patterns:
{patterns}

Recent context:
{context}

Generate insights in JSON format:
{{
  "userPreferences": {{"preference": confidence_score}},
  "communicationStyle": "direct|casual|detailed|creative",
  "topicInterests": ["topic1", "topic2"],
  "sessionContext": "brief description of current session context"
}}"""


def extract_intent_patterns(patterns: Sequence[ConversationPattern]) -> List[IntentPattern]:
    return [
        IntentPattern(sequence=p.pattern.split(INTENT_SEQUENCE_SEPARATOR), frequency=p.occurrences) for p in patterns
        if p.type == PatternType.INTENT_SEQUENCE
    ]


class MemoryInsightAggregator:
    """Merge a pattern list into a MemoryInsight snapshot."""

    def __init__(self, llm: CompletionService):
        self.llm = llm
        logger.info('Initialized MemoryInsightAggregator')

    def generate_memory_insights(self, patterns: Sequence[ConversationPattern], recent_messages: Sequence[Message]) -> MemoryInsight:
        """Build the insight snapshot for the current turn.

        Args:
            patterns: Current conversation patterns
            recent_messages: Conversation history, oldest first (last five are used)

        Returns:
            MemoryInsight; defaults when there are no patterns
        """
        patterns = list(patterns)
        if not patterns:
            return MemoryInsight()

        pattern_summary = '\n'.join(f'{p.type.value}: {p.pattern} (confidence: {p.confidence})' for p in patterns)
        recent_context = '\n'.join(f'{m.role.value}: {m.content}' for m in list(recent_messages)[-RECENT_CONTEXT_MESSAGES:])
        prompt = INSIGHT_PROMPT.format(patterns=pattern_summary, context=recent_context)

        try:
            response = self.llm.generate_text(prompt,
                                              model=ModelVariant.PRIMARY,
                                              temperature=0.2,
                                              operation=Operation.PATTERN_ANALYSIS)
            parsed = parse_llm_json(response.content, opener='{')
            if not isinstance(parsed, dict):
                raise JSONSalvageError('Insight response is not an object')
            return self.parse_insight_response(parsed, patterns)

        except (CompletionError, JSONSalvageError) as e:
            logger.warning(f'Insight generation failed, deriving insights locally: {e}')
            return self.fallback_insight_generation(patterns)

    def parse_insight_response(self, parsed: Dict[str, Any], patterns: Sequence[ConversationPattern]) -> MemoryInsight:
        preferences = parsed.get('userPreferences') or parsed.get('user_preferences') or {}
        topics = parsed.get('topicInterests') or parsed.get('topic_interests') or []

        try:
            style = StyleName(str(parsed.get('communicationStyle') or parsed.get('communication_style') or '').strip().lower())
        except ValueError:
            style = StyleName.CASUAL

        return MemoryInsight(
            user_preferences={str(k): clamp(v) for k, v in preferences.items()} if isinstance(preferences, dict) else {},
            communication_style=style,
            topic_interests=[str(t) for t in topics] if isinstance(topics, list) else [],
            intent_patterns=extract_intent_patterns(patterns),
            session_context=str(parsed.get('sessionContext') or parsed.get('session_context') or 'General conversation'))

    def fallback_insight_generation(self, patterns: Sequence[ConversationPattern]) -> MemoryInsight:
        preferences: Dict[str, float] = {}
        topic_interests: List[str] = []

        for pattern in patterns:
            if pattern.type == PatternType.PREFERENCE:
                preferences[pattern.pattern] = pattern.confidence
            elif pattern.type == PatternType.DOMAIN_INTEREST:
                topic_interests.append(pattern.pattern)

        return MemoryInsight(user_preferences=preferences,
                             communication_style=StyleName.CASUAL,
                             topic_interests=topic_interests,
                             intent_patterns=extract_intent_patterns(patterns),
                             session_context='Conversation in progress')
