"""
Memory data models: conversation patterns, insights, preferences and suggestions.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..utils.json_utils import clamp
from ..utils.timestamp_utils import now, parse_datetime, to_iso

MAX_PATTERN_EXAMPLES = 5


class PatternType(str, Enum):
    PREFERENCE = 'preference'
    COMMUNICATION_STYLE = 'communication_style'
    DOMAIN_INTEREST = 'domain_interest'
    INTENT_SEQUENCE = 'intent_sequence'


class StyleName(str, Enum):
    """The six communication styles, in tie-break order."""
    DIRECT = 'direct'
    CASUAL = 'casual'
    DETAILED = 'detailed'
    CREATIVE = 'creative'
    TECHNICAL = 'technical'
    FORMAL = 'formal'


class PreferenceCategory(str, Enum):
    RESPONSE_STYLE = 'response_style'
    CONTENT_TYPE = 'content_type'
    INTERACTION_PATTERN = 'interaction_pattern'
    TOPIC_INTEREST = 'topic_interest'
    COMMUNICATION_PREFERENCE = 'communication_preference'


class ConversationFlow(str, Enum):
    CONTINUATION = 'continuation'
    TOPIC_SHIFT = 'topic_shift'
    CLARIFICATION_NEEDED = 'clarification_needed'


class ConversationState(str, Enum):
    BEGINNING = 'beginning'
    DEVELOPING = 'developing'
    DEEP_DIVE = 'deep_dive'
    CONCLUSION = 'conclusion'
    TRANSITION = 'transition'


class SuggestionType(str, Enum):
    NEXT_STEP = 'next_step'
    RELATED_TOPIC = 'related_topic'
    FOLLOW_UP = 'follow_up'
    EXPLORATION = 'exploration'
    COMPLETION = 'completion'


class Priority(str, Enum):
    HIGH = 'high'
    MEDIUM = 'medium'
    LOW = 'low'

    @property
    def rank(self) -> int:
        return {'high': 3, 'medium': 2, 'low': 1}[self.value]


class LearningEvent(str, Enum):
    DISCOVERED = 'discovered'
    REINFORCED = 'reinforced'
    WEAKENED = 'weakened'
    CONTRADICTED = 'contradicted'


@dataclass
class ConversationPattern:
    """A typed, confidence-scored observation about recurring user behavior."""
    id: str
    type: PatternType
    pattern: str
    confidence: float
    occurrences: int = 1
    last_seen: datetime = field(default_factory=now)
    examples: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.confidence = clamp(self.confidence)
        # Most recent examples are kept
        self.examples = list(self.examples)[-MAX_PATTERN_EXAMPLES:]

    def add_example(self, example: str) -> None:
        self.examples.append(example)
        if len(self.examples) > MAX_PATTERN_EXAMPLES:
            self.examples = self.examples[-MAX_PATTERN_EXAMPLES:]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type.value,
            'pattern': self.pattern,
            'confidence': self.confidence,
            'occurrences': self.occurrences,
            'last_seen': to_iso(self.last_seen),
            'examples': list(self.examples)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ConversationPattern':
        return cls(id=str(data.get('id', '')),
                   type=PatternType(data.get('type', PatternType.PREFERENCE.value)),
                   pattern=str(data.get('pattern', '')),
                   confidence=data.get('confidence', 0.0),
                   occurrences=int(data.get('occurrences', 1)),
                   last_seen=parse_datetime(data.get('last_seen', data.get('lastSeen'))),
                   examples=[str(e) for e in data.get('examples', []) or []])


@dataclass
class IntentPattern:
    sequence: List[str]
    frequency: int


@dataclass
class MemoryInsight:
    """Fresh projection of the current patterns, recomputed every turn."""
    user_preferences: Dict[str, float] = field(default_factory=dict)
    communication_style: StyleName = StyleName.CASUAL
    topic_interests: List[str] = field(default_factory=list)
    intent_patterns: List[IntentPattern] = field(default_factory=list)
    session_context: str = 'New conversation'


@dataclass
class ContextualReasoning:
    user_intent: str
    confidence: float
    reasoning: str
    based_on: List[ConversationPattern]
    hypothetical_next: List[str]
    conversation_flow: ConversationFlow

    def __post_init__(self):
        self.confidence = clamp(self.confidence)


@dataclass
class CommunicationStyle:
    name: StyleName
    confidence: float
    characteristics: List[str] = field(default_factory=list)
    examples: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.confidence = clamp(self.confidence)


@dataclass
class StyleAdaptationResult:
    detected_style: CommunicationStyle
    adapted_prompt: str
    adaptation_strategy: str
    confidence_score: float


@dataclass
class UserPreference:
    """A decaying, strength-scored user tendency in one of the fixed categories."""
    category: PreferenceCategory
    preference: str
    strength: float
    confidence: float
    last_reinforced: datetime = field(default_factory=now)
    examples: List[str] = field(default_factory=list)
    frequency: float = 1

    def __post_init__(self):
        self.strength = clamp(self.strength)
        self.confidence = clamp(self.confidence)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'category': self.category.value,
            'preference': self.preference,
            'strength': self.strength,
            'confidence': self.confidence,
            'last_reinforced': to_iso(self.last_reinforced),
            'examples': list(self.examples),
            'frequency': self.frequency
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserPreference':
        return cls(category=PreferenceCategory(data['category']),
                   preference=str(data.get('preference', '')),
                   strength=data.get('strength', 0.0),
                   confidence=data.get('confidence', 0.0),
                   last_reinforced=parse_datetime(data.get('last_reinforced', data.get('lastReinforced'))),
                   examples=[str(e) for e in data.get('examples', []) or []],
                   frequency=data.get('frequency', 1))


@dataclass
class LearningHistoryEntry:
    timestamp: datetime
    event: LearningEvent
    preference: UserPreference
    trigger: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': to_iso(self.timestamp),
            'event': self.event.value,
            'preference': self.preference.to_dict(),
            'trigger': self.trigger
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LearningHistoryEntry':
        return cls(timestamp=parse_datetime(data.get('timestamp')),
                   event=LearningEvent(data.get('event', LearningEvent.DISCOVERED.value)),
                   preference=UserPreference.from_dict(data['preference']),
                   trigger=str(data.get('trigger', '')))


@dataclass
class AdaptiveStrategy:
    response_style: str = 'balanced'
    content_focus: List[str] = field(default_factory=list)
    communication_approach: str = 'balanced'


@dataclass
class PreferenceProfile:
    session_id: str
    preferences: List[UserPreference] = field(default_factory=list)
    learning_history: List[LearningHistoryEntry] = field(default_factory=list)
    adaptation_strategy: AdaptiveStrategy = field(default_factory=AdaptiveStrategy)
    last_updated: datetime = field(default_factory=now)
    user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session_id': self.session_id,
            'user_id': self.user_id,
            'preferences': [p.to_dict() for p in self.preferences],
            'learning_history': [h.to_dict() for h in self.learning_history],
            'adaptation_strategy': {
                'response_style': self.adaptation_strategy.response_style,
                'content_focus': list(self.adaptation_strategy.content_focus),
                'communication_approach': self.adaptation_strategy.communication_approach
            },
            'last_updated': to_iso(self.last_updated)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PreferenceProfile':
        strategy = data.get('adaptation_strategy') or {}
        return cls(session_id=str(data.get('session_id', '')),
                   user_id=data.get('user_id'),
                   preferences=[UserPreference.from_dict(p) for p in data.get('preferences', [])],
                   learning_history=[LearningHistoryEntry.from_dict(h) for h in data.get('learning_history', [])],
                   adaptation_strategy=AdaptiveStrategy(response_style=strategy.get('response_style', 'balanced'),
                                                        content_focus=list(strategy.get('content_focus', [])),
                                                        communication_approach=strategy.get('communication_approach', 'balanced')),
                   last_updated=parse_datetime(data.get('last_updated')))


@dataclass
class PreferenceLearningResult:
    new_preferences: List[UserPreference]
    reinforced_preferences: List[UserPreference]
    confidence: float
    reasoning: List[str]


@dataclass
class WorkflowSuggestion:
    id: str
    type: SuggestionType
    title: str
    description: str
    prompt: str
    confidence: float
    reasoning: str
    based_on_patterns: List[str]
    priority: Priority

    def __post_init__(self):
        self.confidence = clamp(self.confidence)


@dataclass
class WorkflowContinuationResult:
    suggestions: List[WorkflowSuggestion]
    conversation_state: ConversationState
    next_best_actions: List[str]
    reasoning: List[str]
