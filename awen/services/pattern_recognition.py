"""
Conversation pattern extraction, reinforcement and cleanup.

Patterns are extracted by the model from the transcript and parsed in layers
(strict JSON, repaired JSON, positional field extraction). When the model
call fails or nothing can be salvaged, a keyword heuristic runs instead.
"""

import re
import uuid
from dataclasses import replace
from typing import Any, List, Optional, Sequence

from ..models.core import Message, ModelVariant, Operation, Role
from ..models.memory import ConversationPattern, PatternType
from ..utils.config import MemoryConfig, config
from ..utils.json_utils import JSONSalvageError, clamp, extract_positional_fields, parse_llm_json
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import is_older_than, now
from .completion import CompletionError, CompletionService
from .storage import KeyValueStore

logger = get_logger(__name__)

PATTERN_COLLECTION = 'awen-conversation-patterns'
MIN_PATTERN_MESSAGES = 3
MAX_PATTERNS = 5
MIN_PATTERN_OCCURRENCES = 2
PATTERN_CONFIDENCE_THRESHOLD = 0.6
STALE_CONFIDENCE_CEILING = 0.8
REINFORCEMENT_STEP = 0.1
MIN_KEYWORD_LENGTH = 4
IMAGE_REQUEST_KEYWORDS = ('image', 'generate', 'create')

PATTERN_ANALYSIS_PROMPT = """
Analyze this conversation to identify user patterns. Look for:

1. USER PREFERENCES: What does the user consistently prefer? (style, format, detail level)
2. COMMUNICATION STYLE: How does the user communicate? (formal/casual, brief/detailed)
3. DOMAIN INTERESTS: What topics/domains is the user interested in?
4. INTENT SEQUENCES: What request patterns does the user follow?

Conversation:
{conversation}

IMPORTANT: Respond with ONLY valid JSON. No additional text before or after the JSON.

Respond in this exact JSON format:
[
  {{
    "type": "preference",
    "pattern": "brief description",
    "confidence": 0.8,
    "examples": ["exact quote from conversation"]
  }}
]

Rules:
- Use only these types: "preference", "communication_style", "domain_interest", "intent_sequence"
- Confidence must be a number between 0.0 and 1.0
- Examples must be actual quotes from the conversation
- No trailing commas
- Use double quotes only
- Maximum 5 patterns

Only include patterns with confidence > 0.6 and clear evidence from the conversation."""


def generate_pattern_id(description: str) -> str:
    slug = re.sub(r'\s+', '_', description.strip())[:20]
    return f'pattern_{uuid.uuid4().hex[:8]}_{slug}'


def format_interaction_example(user_message: Message, response: Message) -> str:
    return f'User: {user_message.content[:50]}... → AI: {response.content[:50]}...'


def parse_confidence(value: Any) -> Optional[float]:
    """Read a model-reported confidence given as a number or numeric string."""
    if isinstance(value, bool):
        return None
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return None
    if confidence != confidence:  # NaN
        return None
    return confidence


class PatternRecognitionEngine:
    """Extract typed conversation patterns and keep them current across turns."""

    def __init__(self, llm: CompletionService, store: KeyValueStore, memory_config: Optional[MemoryConfig] = None):
        """Initialize the pattern engine.

        Args:
            llm: CompletionService used for pattern extraction
            store: KeyValueStore holding patterns per session
            memory_config: MemoryConfig instance, uses default if None
        """
        self.llm = llm
        self.store = store
        self.memory_config = memory_config or config.memory
        logger.info('Initialized PatternRecognitionEngine')

    def analyze_conversation(self, messages: Sequence[Message]) -> List[ConversationPattern]:
        """Extract patterns from a conversation.

        Args:
            messages: Conversation history, oldest first

        Returns:
            Up to five ConversationPattern objects with confidence >= 0.6
        """
        messages = list(messages)
        if len(messages) < MIN_PATTERN_MESSAGES:
            return self.fallback_pattern_detection(messages)

        conversation = '\n'.join(f'{m.role.value}: {m.content}' for m in messages)
        prompt = PATTERN_ANALYSIS_PROMPT.format(conversation=conversation)

        try:
            response = self.llm.generate_text(prompt,
                                              model=ModelVariant.PRIMARY,
                                              temperature=0.3,
                                              operation=Operation.PATTERN_ANALYSIS)
        except CompletionError as e:
            logger.warning(f'Pattern analysis failed, using keyword heuristic: {e}')
            return self.fallback_pattern_detection(messages)

        patterns = self.parse_pattern_response(response.content)
        if patterns is None:
            logger.warning('No patterns could be salvaged from model output, using keyword heuristic')
            return self.fallback_pattern_detection(messages)

        logger.debug(f'Extracted {len(patterns)} patterns from {len(messages)} messages')
        return patterns

    def parse_pattern_response(self, content: str) -> Optional[List[ConversationPattern]]:
        """Parse model output into patterns.

        Returns:
            The accepted patterns (possibly empty when the model found none),
            or None when neither the JSON layers nor positional extraction
            recovered anything
        """
        try:
            records = parse_llm_json(content, opener='[')
            if not isinstance(records, list):
                raise JSONSalvageError('Pattern response is not an array')
            return self._build_patterns(records)

        except JSONSalvageError as e:
            logger.debug(f'JSON layers failed for pattern response: {e}')

        records = extract_positional_fields(content, string_fields=('pattern', 'type'), number_fields=('confidence',))
        if not records:
            return None
        return self._build_patterns(records)

    def update_patterns(self, user_message: Message, response: Message,
                        patterns: Sequence[ConversationPattern]) -> List[ConversationPattern]:
        """Reinforce patterns matched by a new exchange, then drop stale ones.

        Args:
            user_message: The new user message
            response: The assistant response to it
            patterns: Current patterns (left unchanged)

        Returns:
            The retained patterns, with matched ones replaced by reinforced copies
        """
        updated = []
        example = format_interaction_example(user_message, response)

        for pattern in patterns:
            if self.matches_pattern(user_message, response, pattern):
                pattern = replace(pattern,
                                  occurrences=pattern.occurrences + 1,
                                  confidence=min(pattern.confidence + REINFORCEMENT_STEP, 1.0),
                                  last_seen=now())
                pattern.add_example(example)
            updated.append(pattern)

        return self.cleanup_patterns(updated)

    def cleanup_patterns(self, patterns: Sequence[ConversationPattern]) -> List[ConversationPattern]:
        """Drop patterns that are stale, low-confidence and rarely seen, all at once."""
        reference = now()
        retained = [
            p for p in patterns if not (is_older_than(p.last_seen, self.memory_config.pattern_stale_days, reference) and
                                        p.confidence <= STALE_CONFIDENCE_CEILING and p.occurrences < MIN_PATTERN_OCCURRENCES)
        ]

        if len(retained) < len(patterns):
            logger.debug(f'Cleaned up {len(patterns) - len(retained)} stale patterns')
        return retained

    def matches_pattern(self, user_message: Message, response: Message, pattern: ConversationPattern) -> bool:
        content = f'{user_message.content} {response.content}'.lower()
        keywords = [word for word in pattern.pattern.lower().split() if len(word) >= MIN_KEYWORD_LENGTH]
        return any(keyword in content for keyword in keywords)

    def fallback_pattern_detection(self, messages: Sequence[Message]) -> List[ConversationPattern]:
        """Keyword heuristic: detects only repeated image requests."""
        user_messages = [m for m in messages if m.role == Role.USER]
        image_requests = [m for m in user_messages if any(k in m.content.lower() for k in IMAGE_REQUEST_KEYWORDS)]

        if len(image_requests) < 2:
            return []

        description = 'User frequently requests image generation'
        return [
            ConversationPattern(id=generate_pattern_id(description),
                                type=PatternType.PREFERENCE,
                                pattern=description,
                                confidence=0.7,
                                occurrences=len(image_requests),
                                examples=[m.content for m in image_requests[:3]])
        ]

    def save_patterns(self, session_id: str, patterns: Sequence[ConversationPattern]) -> None:
        self.store.put(PATTERN_COLLECTION, session_id, [p.to_dict() for p in patterns])
        logger.debug(f'Saved {len(patterns)} patterns for session {session_id}')

    def load_patterns(self, session_id: str) -> List[ConversationPattern]:
        data = self.store.get(PATTERN_COLLECTION, session_id)
        if not isinstance(data, list):
            return []

        patterns = []
        for item in data:
            try:
                patterns.append(ConversationPattern.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f'Skipping unreadable pattern for session {session_id}: {e}')
        return patterns

    def _build_patterns(self, records: Sequence[Any]) -> List[ConversationPattern]:
        patterns = []

        for record in records:
            if not isinstance(record, dict) or not record.get('pattern'):
                continue
            confidence = parse_confidence(record.get('confidence'))
            if confidence is None or confidence < PATTERN_CONFIDENCE_THRESHOLD:
                continue

            try:
                pattern_type = PatternType(str(record.get('type', '')).strip())
            except ValueError:
                logger.debug(f'Skipping pattern with unknown type: {record.get("type")}')
                continue

            examples = record.get('examples')
            description = str(record['pattern'])
            patterns.append(
                ConversationPattern(id=generate_pattern_id(description),
                                    type=pattern_type,
                                    pattern=description,
                                    confidence=clamp(confidence),
                                    occurrences=1,
                                    last_seen=now(),
                                    examples=[str(e) for e in examples] if isinstance(examples, list) else []))

            if len(patterns) >= MAX_PATTERNS:
                break

        return patterns
