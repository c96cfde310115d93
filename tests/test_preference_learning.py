import pytest

from awen.models.memory import (LearningEvent, LearningHistoryEntry, PreferenceCategory, PreferenceLearningResult, PreferenceProfile,
                                UserPreference)
from awen.services.preference_learning import PROFILE_COLLECTION, UserPreferenceLearning
from awen.services.storage import NullStore


@pytest.fixture
def learner(store) -> UserPreferenceLearning:
    return UserPreferenceLearning(store)


def preference(category, label, strength, confidence=0.6) -> UserPreference:
    return UserPreference(category=category, preference=label, strength=strength, confidence=confidence)


def test_conversation_without_user_messages_learns_nothing(learner, conversation) -> None:
    result = learner.analyze_user_preferences(conversation(('assistant', 'Hello! How can I help?')))

    assert result.new_preferences == []
    assert result.confidence == 0.0
    assert result.reasoning == ['No user messages to analyze']


def test_short_messages_yield_concise_and_quick_responses(learner, conversation) -> None:
    result = learner.analyze_user_preferences(conversation(('user', 'ok'), ('assistant', 'Sure'), ('user', 'go on')))

    learned = {(p.category, p.preference): p for p in result.new_preferences}

    concise = learned[(PreferenceCategory.RESPONSE_STYLE, 'concise')]
    assert concise.strength == pytest.approx(0.6)
    assert concise.confidence == pytest.approx(0.72)
    assert concise.examples == ['ok', 'go on']
    assert (PreferenceCategory.INTERACTION_PATTERN, 'quick_responses') in learned
    assert len(learned) == 2
    assert result.confidence == pytest.approx((0.72 + 0.8) / 2)
    assert result.reasoning == ['Analyzed 3 messages', 'Found 2 new preferences', 'Reinforced 0 existing preferences']


def test_single_message_has_no_interaction_pattern(learner, conversation) -> None:
    result = learner.analyze_user_preferences(conversation(('user', 'hi')))

    assert all(p.category != PreferenceCategory.INTERACTION_PATTERN for p in result.new_preferences)


def test_content_types_are_normalized_by_message_count(learner, conversation) -> None:
    messages = conversation(('user', 'write code'), ('user', 'more code please'))

    preferences = learner.analyze_content_type_preferences(messages)

    assert len(preferences) == 1
    assert preferences[0].preference == 'code'
    assert preferences[0].strength == 1.0
    assert preferences[0].frequency == 2
    assert preferences[0].examples == ['write code', 'more code please']


def test_style_indicators_are_capped(learner, conversation) -> None:
    messages = conversation(*[('user', 'hey cool')] * 8)

    indicators = learner.extract_style_indicators(messages)

    assert indicators['concise'] == 1.0
    assert indicators['casual'] == 1.0
    assert indicators['detailed'] == 0.0


def test_merge_decays_existing_and_keeps_new_entries_first(learner) -> None:
    new = [preference(PreferenceCategory.RESPONSE_STYLE, 'concise', 0.6)]
    existing = [
        preference(PreferenceCategory.RESPONSE_STYLE, 'concise', 0.9),
        preference(PreferenceCategory.RESPONSE_STYLE, 'technical', 0.5),
        preference(PreferenceCategory.CONTENT_TYPE, 'code', 0.1),
    ]

    merged, reinforced = learner.merge_with_existing_preferences(new, [], existing)

    assert [(p.preference, p.strength) for p in merged] == [('concise', 0.6), ('technical', pytest.approx(0.475))]
    assert reinforced == []


def test_adaptive_strategy_uses_strongest_style_and_content_focus(learner) -> None:
    strategy = learner.generate_adaptive_strategy([
        preference(PreferenceCategory.RESPONSE_STYLE, 'concise', 0.6),
        preference(PreferenceCategory.RESPONSE_STYLE, 'technical', 0.8),
        preference(PreferenceCategory.CONTENT_TYPE, 'code', 0.5),
        preference(PreferenceCategory.CONTENT_TYPE, 'analysis', 0.25),
    ])

    assert strategy.response_style == 'technical'
    assert strategy.content_focus == ['code']
    assert strategy.communication_approach == 'technical'


def test_communication_approach_tie_goes_to_later_style(learner) -> None:
    approach = learner.determine_communication_approach([
        preference(PreferenceCategory.RESPONSE_STYLE, 'concise', 0.5),
        preference(PreferenceCategory.RESPONSE_STYLE, 'casual', 0.5),
    ])

    assert approach == 'casual'


def test_adaptive_strategy_defaults_to_balanced(learner) -> None:
    strategy = learner.generate_adaptive_strategy([])

    assert strategy.response_style == 'balanced'
    assert strategy.communication_approach == 'balanced'
    assert strategy.content_focus == []


def test_profile_round_trips_through_store(learner, store, conversation) -> None:
    result = learner.analyze_user_preferences(conversation(('user', 'ok'), ('assistant', 'Sure'), ('user', 'go on')))
    profile = learner.build_profile('s1', result, None, 'go on')

    learner.save_preference_profile(profile)
    loaded = learner.load_preference_profile('s1')

    assert store.get(PROFILE_COLLECTION, 's1')['session_id'] == 's1'
    assert loaded is not None
    assert [(p.category, p.preference) for p in loaded.preferences] == [(p.category, p.preference) for p in profile.preferences]
    assert [h.event for h in loaded.learning_history] == [LearningEvent.DISCOVERED] * 2
    assert loaded.adaptation_strategy.response_style == 'concise'


def test_build_profile_keeps_recent_history_and_truncates_trigger(learner) -> None:
    old = preference(PreferenceCategory.RESPONSE_STYLE, 'formal', 0.4)
    existing = PreferenceProfile(session_id='s1',
                                 user_id='u1',
                                 learning_history=[
                                     LearningHistoryEntry(timestamp=old.last_reinforced,
                                                          event=LearningEvent.DISCOVERED,
                                                          preference=old,
                                                          trigger=f'turn {i}') for i in range(25)
                                 ])
    result = PreferenceLearningResult(new_preferences=[preference(PreferenceCategory.RESPONSE_STYLE, 'concise', 0.6)],
                                      reinforced_preferences=[],
                                      confidence=0.72,
                                      reasoning=[])

    profile = learner.build_profile('s1', result, existing, 'x' * 300)

    assert len(profile.learning_history) == 21
    assert profile.learning_history[0].trigger == 'turn 5'
    assert profile.learning_history[-1].trigger == 'x' * 100
    assert profile.user_id == 'u1'


def test_missing_or_unreadable_profile_loads_as_none(learner, store) -> None:
    assert learner.load_preference_profile('unknown') is None

    store.put(PROFILE_COLLECTION, 'broken', {'preferences': [{'category': 'not-a-category'}]})
    assert learner.load_preference_profile('broken') is None

    assert UserPreferenceLearning(NullStore()).load_preference_profile('s1') is None
