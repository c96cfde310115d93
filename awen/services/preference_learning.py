"""
User preference learning with multiplicative decay and session-keyed persistence.
"""

from typing import Dict, List, Optional, Sequence, Tuple

from ..models.core import Message, Role
from ..models.memory import (AdaptiveStrategy, LearningEvent, LearningHistoryEntry, PreferenceCategory, PreferenceLearningResult,
                             PreferenceProfile, UserPreference)
from ..utils.config import MemoryConfig, config
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import now
from .storage import KeyValueStore

logger = get_logger(__name__)

PROFILE_COLLECTION = 'user_preferences'
PREFERENCE_THRESHOLD = 0.3
CONTENT_TYPE_THRESHOLD = 0.2
REINFORCEMENT_DECAY = 0.95
MIN_RETAINED_STRENGTH = 0.1

STYLE_INDICATOR_LABELS = ('concise', 'detailed', 'casual', 'formal', 'technical', 'creative')
CONTENT_TYPE_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    'code': ('code', 'function'),
    'explanation': ('explain', 'what'),
    'creative': ('create', 'design'),
    'analysis': ('analyze', 'compare'),
    'troubleshooting': ('error', 'fix'),
    'learning': ('learn', 'how'),
}


class UserPreferenceLearning:
    """Learn response-style, content-type and interaction preferences from a conversation."""

    def __init__(self, store: KeyValueStore, memory_config: Optional[MemoryConfig] = None):
        self.store = store
        self.memory_config = memory_config or config.memory
        logger.info('Initialized UserPreferenceLearning')

    def analyze_user_preferences(self,
                                 messages: Sequence[Message],
                                 existing_profile: Optional[PreferenceProfile] = None) -> PreferenceLearningResult:
        """Analyze a conversation to learn user preferences.

        Args:
            messages: Full conversation history (both roles)
            existing_profile: Previously persisted profile to merge with

        Returns:
            PreferenceLearningResult with merged preferences and a count-only reasoning trail
        """
        messages = list(messages)
        if not any(m.role == Role.USER for m in messages):
            return PreferenceLearningResult(new_preferences=[],
                                            reinforced_preferences=[],
                                            confidence=0.0,
                                            reasoning=['No user messages to analyze'])

        new_preferences: List[UserPreference] = []
        reinforced_preferences: List[UserPreference] = []

        new_preferences.extend(self.analyze_response_style_preferences(messages))
        new_preferences.extend(self.analyze_content_type_preferences(messages))
        new_preferences.extend(self.analyze_interaction_patterns(messages))

        existing = existing_profile.preferences if existing_profile else []
        merged, reinforced = self.merge_with_existing_preferences(new_preferences, reinforced_preferences, existing)

        confidence = self.calculate_overall_confidence(merged, reinforced)
        logger.debug(f'Learned {len(merged)} preferences from {len(messages)} messages (confidence {confidence:.2f})')

        return PreferenceLearningResult(new_preferences=merged,
                                        reinforced_preferences=reinforced,
                                        confidence=confidence,
                                        reasoning=[
                                            f'Analyzed {len(messages)} messages',
                                            f'Found {len(merged)} new preferences',
                                            f'Reinforced {len(reinforced)} existing preferences'
                                        ])

    def generate_adaptive_strategy(self, preferences: Sequence[UserPreference]) -> AdaptiveStrategy:
        dominant = self.find_dominant_preference(preferences, PreferenceCategory.RESPONSE_STYLE)
        content_focus = [
            p.preference for p in preferences if p.category == PreferenceCategory.CONTENT_TYPE and p.strength > PREFERENCE_THRESHOLD
        ]
        return AdaptiveStrategy(response_style=dominant.preference if dominant else 'balanced',
                                content_focus=content_focus,
                                communication_approach=self.determine_communication_approach(preferences))

    def build_profile(self,
                      session_id: str,
                      result: PreferenceLearningResult,
                      existing_profile: Optional[PreferenceProfile],
                      trigger: str) -> PreferenceProfile:
        """Assemble the profile to persist after a learning pass.

        Keeps the most recent learning-history events and records a
        discovered/reinforced event for each learned preference.
        """
        timestamp = now()
        history = list(existing_profile.learning_history)[-self.memory_config.learning_history_size:] if existing_profile else []
        history.extend(
            LearningHistoryEntry(timestamp=timestamp, event=LearningEvent.DISCOVERED, preference=p, trigger=trigger[:100])
            for p in result.new_preferences)
        history.extend(
            LearningHistoryEntry(timestamp=timestamp, event=LearningEvent.REINFORCED, preference=p, trigger=trigger[:100])
            for p in result.reinforced_preferences)

        preferences = result.new_preferences + result.reinforced_preferences
        return PreferenceProfile(session_id=session_id,
                                 user_id=existing_profile.user_id if existing_profile else None,
                                 preferences=preferences,
                                 learning_history=history,
                                 adaptation_strategy=self.generate_adaptive_strategy(preferences),
                                 last_updated=timestamp)

    def save_preference_profile(self, profile: PreferenceProfile) -> None:
        self.store.put(PROFILE_COLLECTION, profile.session_id, profile.to_dict())
        logger.debug(f'Saved preference profile for session {profile.session_id}')

    def load_preference_profile(self, session_id: str) -> Optional[PreferenceProfile]:
        """Load a persisted profile. Returns None when absent or unreadable."""
        data = self.store.get(PROFILE_COLLECTION, session_id)
        if not data:
            return None

        try:
            return PreferenceProfile.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f'Failed to load preference profile for session {session_id}: {e}')
            return None

    def analyze_response_style_preferences(self, messages: Sequence[Message]) -> List[UserPreference]:
        indicators = self.extract_style_indicators(messages)
        user_examples = [m.content[:100] for m in messages if m.role == Role.USER]

        return [
            UserPreference(category=PreferenceCategory.RESPONSE_STYLE,
                           preference=style,
                           strength=strength,
                           confidence=min(strength * 1.2, 1.0),
                           examples=list(user_examples),
                           frequency=1) for style, strength in indicators.items() if strength > PREFERENCE_THRESHOLD
        ]

    def analyze_content_type_preferences(self, messages: Sequence[Message]) -> List[UserPreference]:
        content_types = self.identify_content_types(messages)
        preferences = []

        for content_type, count in content_types.items():
            if count > CONTENT_TYPE_THRESHOLD:
                normalized = count / len(messages)
                preferences.append(
                    UserPreference(category=PreferenceCategory.CONTENT_TYPE,
                                   preference=content_type,
                                   strength=normalized,
                                   confidence=normalized,
                                   examples=[
                                       m.content[:100] for m in messages if m.role == Role.USER and content_type in m.content.lower()
                                   ],
                                   frequency=count))

        return preferences

    def analyze_interaction_patterns(self, messages: Sequence[Message]) -> List[UserPreference]:
        # Message timing is not tracked, so any multi-turn exchange counts
        if len(messages) <= 1:
            return []

        return [
            UserPreference(category=PreferenceCategory.INTERACTION_PATTERN,
                           preference='quick_responses',
                           strength=0.7,
                           confidence=0.8,
                           examples=['Tends to ask follow-up questions quickly'],
                           frequency=1)
        ]

    def extract_style_indicators(self, messages: Sequence[Message]) -> Dict[str, float]:
        indicators = {label: 0.0 for label in STYLE_INDICATOR_LABELS}

        for message in messages:
            if message.role != Role.USER:
                continue

            content = message.content.lower()
            length = len(message.content)

            if length < 50:
                indicators['concise'] += 0.3
            if length > 200:
                indicators['detailed'] += 0.3
            if 'please' in content or 'thank' in content:
                indicators['formal'] += 0.2
            if 'hey' in content or 'cool' in content:
                indicators['casual'] += 0.2
            if 'implement' in content or 'function' in content:
                indicators['technical'] += 0.2
            if 'creative' in content or 'artistic' in content:
                indicators['creative'] += 0.2

        return {label: min(value, 1.0) for label, value in indicators.items()}

    def identify_content_types(self, messages: Sequence[Message]) -> Dict[str, int]:
        counts = {content_type: 0 for content_type in CONTENT_TYPE_KEYWORDS}

        for message in messages:
            if message.role != Role.USER:
                continue
            content = message.content.lower()
            for content_type, keywords in CONTENT_TYPE_KEYWORDS.items():
                if any(keyword in content for keyword in keywords):
                    counts[content_type] += 1

        return counts

    def merge_with_existing_preferences(
            self, new_preferences: List[UserPreference], reinforced_preferences: List[UserPreference],
            existing_preferences: Sequence[UserPreference]) -> Tuple[List[UserPreference], List[UserPreference]]:
        """Merge decayed existing preferences behind the newly learned ones.

        Existing entries decay by 0.95, are dropped at or below 0.1 strength and
        never replace a new entry with the same category and label.
        """
        merged = list(new_preferences)
        reinforced = list(reinforced_preferences)
        seen = {(p.category, p.preference) for p in merged}

        for existing in existing_preferences:
            strength = existing.strength * REINFORCEMENT_DECAY
            if strength <= MIN_RETAINED_STRENGTH:
                continue
            if (existing.category, existing.preference) in seen:
                continue

            merged.append(
                UserPreference(category=existing.category,
                               preference=existing.preference,
                               strength=strength,
                               confidence=existing.confidence,
                               last_reinforced=existing.last_reinforced,
                               examples=list(existing.examples),
                               frequency=existing.frequency))
            seen.add((existing.category, existing.preference))

        return merged, reinforced

    def find_dominant_preference(self, preferences: Sequence[UserPreference], category: PreferenceCategory) -> Optional[UserPreference]:
        strongest = None
        for preference in preferences:
            if preference.category != category:
                continue
            if strongest is None or preference.strength > strongest.strength:
                strongest = preference
        return strongest

    def determine_communication_approach(self, preferences: Sequence[UserPreference]) -> str:
        """Response-style label with the highest summed strength; the later label wins a tie."""
        totals: Dict[str, float] = {}
        for preference in preferences:
            if preference.category == PreferenceCategory.RESPONSE_STYLE:
                totals[preference.preference] = totals.get(preference.preference, 0.0) + preference.strength

        if not totals:
            return 'balanced'

        approach, best = 'balanced', None
        for label, total in totals.items():
            if best is None or total >= best:
                approach, best = label, total
        return approach

    def calculate_overall_confidence(self, new_preferences: Sequence[UserPreference], reinforced_preferences: Sequence[UserPreference]) -> float:
        preferences = list(new_preferences) + list(reinforced_preferences)
        if not preferences:
            return 0.0
        return min(sum(p.confidence for p in preferences) / len(preferences), 1.0)
