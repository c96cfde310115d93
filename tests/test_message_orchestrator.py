import pytest

from awen.models.core import FALLBACK_MODEL, PROMPT_GENERATOR, ActionType, Role
from awen.models.memory import ConversationPattern, ConversationState, PatternType
from awen.services.contextual_reasoning import DEFAULT_PREDICTION
from awen.services.message_orchestrator import FALLBACK_REPLY, MessageOrchestrator
from awen.utils.config import config

from conftest import (ALL_PROMPTS, CLARIFICATION_PROMPT, IMAGE_PROMPT, INTENT_PROMPT, PATTERN_PROMPT, PREFERENCE_PROMPT, FakeBedrockLLM)

IMAGE_INTENT_REPLY = '{"intent": "image", "confidence": 0.9, "reasoning": "Wants a picture"}'


@pytest.fixture
def build(make_completion, store):

    def _build(llm: FakeBedrockLLM) -> MessageOrchestrator:
        return MessageOrchestrator(llm=make_completion(llm), store=store)

    return _build


@pytest.fixture
def tea_history(conversation):
    return conversation(('user', 'I love green tea'), ('assistant', 'Nice choice'), ('user', 'Tell me about brewing'))


def test_image_request_produces_image_prompt(build) -> None:
    llm = FakeBedrockLLM(replies={INTENT_PROMPT: IMAGE_INTENT_REPLY, IMAGE_PROMPT: '**Image Prompt:**\nA red fox at dawn'})

    result = build(llm).process_message('Create an image of a fox', 's1')

    assert result.message.role == Role.ASSISTANT
    assert result.message.content == '**Image Prompt:**\nA red fox at dawn'
    assert result.message.is_image is True
    assert result.message.intent == ActionType.IMAGE_PROMPT
    assert result.message.model_used == PROMPT_GENERATOR
    assert result.message.confidence == pytest.approx(0.9)

    chain = result.action_log.reasoning_chain
    assert len(chain) == 11
    assert chain[1] == '2. Classified intent as "image" (90% confidence)'
    assert chain[9] == f'10. Used model: {PROMPT_GENERATOR}'
    assert result.conversation_state == ConversationState.BEGINNING
    assert len(result.workflow_suggestions) == 3


def test_image_request_survives_model_outage(build) -> None:
    result = build(FakeBedrockLLM(fail=True)).process_message('Create an image of a fox', 's1')

    assert result.message.intent == ActionType.IMAGE_PROMPT
    assert result.message.content.startswith('**Image Prompt:**\nCreate an image of a fox')
    assert result.message.confidence == pytest.approx(0.7)
    assert result.action_log is not None


def test_text_request_during_outage_returns_fallback_bundle(build) -> None:
    result = build(FakeBedrockLLM(fail=True)).process_message('Tell me a joke about penguins', 's1')

    assert result.message.content == FALLBACK_REPLY
    assert result.message.confidence == pytest.approx(0.3)
    assert result.message.model_used == FALLBACK_MODEL
    assert result.message.intent == ActionType.TEXT
    assert result.action_log is None
    assert result.patterns == []
    assert result.workflow_suggestions == []
    assert result.conversation_state == ConversationState.BEGINNING


@pytest.mark.parametrize('marker', ALL_PROMPTS)
def test_any_single_failing_call_still_yields_a_reply(build, tea_history, marker) -> None:
    result = build(FakeBedrockLLM(fail_on=[marker])).process_message('Which tea is best for mornings?', 's1', tea_history)

    assert result.message.role == Role.ASSISTANT
    assert result.message.content
    if result.action_log is None:
        assert result.message.content == FALLBACK_REPLY
    else:
        assert len(result.action_log.reasoning_chain) == 11
    if marker == PREFERENCE_PROMPT:
        assert result.message.model_used == FALLBACK_MODEL


def test_default_path_sends_preference_context_with_history(build, tea_history) -> None:
    llm = FakeBedrockLLM(default='Here you go')
    orchestrator = build(llm)

    result = orchestrator.process_message('Which tea is best for mornings?', 's1', tea_history)

    assert result.message.content == 'Here you go'
    assert result.message.intent == ActionType.TEXT
    assert result.message.model_used == config.bedrock_llm.primary_model_id
    assert result.action_log.optimization is not None
    assert result.action_log.reasoning_chain[8] == '9. Applied preference-aware response generation'
    assert result.predictive_insights == []

    sent = llm.prompts_containing(PREFERENCE_PROMPT)
    assert len(sent) == 1
    assert sent[0]['prompt'].startswith('Communication style:')
    assert [turn['role'] for turn in sent[0]['messages']] == ['user', 'assistant', 'user']

    assert orchestrator.get_user_preferences('s1')['has_preferences'] is True


def test_patterns_route_through_contextual_reasoning_and_persist(build, tea_history) -> None:
    llm = FakeBedrockLLM(replies={PATTERN_PROMPT: '[{"type": "domain_interest", "pattern": "Tea brewing", "confidence": 0.8}]'})
    orchestrator = build(llm)

    result = orchestrator.process_message('Which tea is best for mornings?', 's1', tea_history)

    assert result.message.intent == ActionType.CONTEXTUAL_REASONING
    assert result.action_log.contextual_reasoning is not None
    assert result.action_log.reasoning_chain[8] == '9. Applied contextual reasoning'
    assert [p.pattern for p in result.patterns] == ['Tea brewing']
    assert result.predictive_insights == ['Ask follow-up questions for clarification', 'Request additional details or examples']

    assert [p.pattern for p in orchestrator.get_conversation_patterns('s1')] == ['Tea brewing']

    snapshot = orchestrator.get_memory_insights('s1')
    assert snapshot['pattern_count'] == 1
    assert snapshot['insights'].topic_interests == ['Tea brewing']


def test_persisted_patterns_are_used_without_history(build, store) -> None:
    orchestrator = build(FakeBedrockLLM())
    orchestrator.pattern_engine.save_patterns(
        's1', [ConversationPattern(id='p1', type=PatternType.DOMAIN_INTEREST, pattern='Tea brewing', confidence=0.8)])

    result = orchestrator.process_message('Which tea is best for mornings?', 's1')

    assert result.message.intent == ActionType.CONTEXTUAL_REASONING
    assert result.action_log.reasoning_chain[0] == '1. Loaded 1 conversation patterns'


def test_action_log_keeps_patterns_as_they_were_when_deciding(build) -> None:
    orchestrator = build(FakeBedrockLLM())
    orchestrator.pattern_engine.save_patterns(
        's1', [ConversationPattern(id='p1', type=PatternType.DOMAIN_INTEREST, pattern='Tea brewing', confidence=0.8)])

    result = orchestrator.process_message('Which tea brewing method is best?', 's1')

    logged = result.action_log.conversation_patterns[0]
    assert logged.occurrences == 1
    assert logged.confidence == pytest.approx(0.8)
    assert logged.examples == []
    assert all(p.occurrences == 1 for p in result.action_log.contextual_reasoning.based_on)

    assert result.patterns[0].occurrences == 2
    assert result.patterns[0].confidence == pytest.approx(0.9)
    assert len(result.patterns[0].examples) == 1
    assert orchestrator.get_conversation_patterns('s1')[0].occurrences == 2


def test_clarify_intent_asks_a_question(build) -> None:
    llm = FakeBedrockLLM(replies={
        INTENT_PROMPT: '{"intent": "clarify", "confidence": 0.55, "reasoning": "Too vague"}',
        CLARIFICATION_PROMPT: 'Which one do you mean?'
    })

    result = build(llm).process_message('that one', 's1')

    assert result.message.intent == ActionType.CLARIFY
    assert result.message.content == 'Which one do you mean?'
    assert llm.prompts_containing(CLARIFICATION_PROMPT)[0]['model_id'] == config.bedrock_llm.lite_model_id


def test_clarification_failure_uses_template(build) -> None:
    llm = FakeBedrockLLM(replies={INTENT_PROMPT: '{"intent": "clarify", "confidence": 0.55}'}, fail_on=[CLARIFICATION_PROMPT])

    result = build(llm).process_message('that one', 's1')

    assert result.message.content.startswith('Could you provide more details about "that one"?')


def test_merge_patterns_prefers_fresh_analysis(build) -> None:
    orchestrator = build(FakeBedrockLLM())
    fresh = [ConversationPattern(id='new', type=PatternType.PREFERENCE, pattern='Likes tea', confidence=0.7)]
    existing = [
        ConversationPattern(id='old', type=PatternType.PREFERENCE, pattern='likes TEA ', confidence=0.9),
        ConversationPattern(id='other', type=PatternType.PREFERENCE, pattern='Prefers lists', confidence=0.9),
    ]

    assert [p.id for p in orchestrator.merge_patterns(fresh, existing)] == ['new', 'other']


def test_side_queries_for_an_empty_session(build) -> None:
    orchestrator = build(FakeBedrockLLM())

    assert orchestrator.get_predictive_insights('empty') == [DEFAULT_PREDICTION]
    assert orchestrator.get_user_preferences('empty') == {'profile': None, 'has_preferences': False}
    assert orchestrator.get_memory_insights('empty')['pattern_count'] == 0
    assert orchestrator.reason_about_intent('hello', 'empty').confidence == pytest.approx(0.4)


def test_record_feedback_validates_type(build) -> None:
    orchestrator = build(FakeBedrockLLM())

    assert orchestrator.record_feedback('msg_1', True, 'response_quality') == {
        'success': True,
        'message': 'Feedback recorded successfully'
    }
    with pytest.raises(ValueError):
        orchestrator.record_feedback('msg_1', False, 'vibes')
