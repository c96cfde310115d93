import pytest

from awen.models.core import Message, ModelVariant, Operation, Role
from awen.services.token_optimizer import TokenOptimizer
from awen.utils.config import config


@pytest.fixture
def optimizer() -> TokenOptimizer:
    return TokenOptimizer(config.bedrock_llm)


def test_short_history_passes_through_unchanged(optimizer, conversation) -> None:
    messages = conversation(('user', 'hello'), ('assistant', 'hi!'), ('user', 'how are you'))

    result = optimizer.optimize_conversation_history(messages)

    assert result.messages == messages
    assert result.tokens_saved == 0
    assert result.strategy == 'no_optimization_needed'


def test_history_optimization_is_idempotent_on_short_history(optimizer, conversation) -> None:
    messages = conversation(*[('user', f'message {i}') for i in range(5)])

    once = optimizer.optimize_conversation_history(messages)
    twice = optimizer.optimize_conversation_history(once.messages)

    assert twice.messages == once.messages == messages
    assert twice.tokens_saved == 0


def test_long_history_keeps_recent_and_important_messages(optimizer, conversation) -> None:
    messages = conversation(
        ('user', 'I prefer short answers with examples'),
        ('assistant', 'Noted, I will keep it short.' * 5),
        ('user', 'filler one ' * 10),
        ('assistant', 'filler two ' * 10),
        ('user', 'recent 1'),
        ('assistant', 'recent 2'),
        ('user', 'recent 3'),
        ('assistant', 'recent 4'),
        ('user', 'recent 5'),
    )

    result = optimizer.optimize_conversation_history(messages)

    assert result.strategy == 'recent_plus_important'
    assert result.messages[0].content == 'I prefer short answers with examples'
    assert [m.content for m in result.messages[-5:]] == ['recent 1', 'recent 2', 'recent 3', 'recent 4', 'recent 5']
    assert len(result.messages) == 6
    assert result.tokens_saved > 0


def test_high_importance_detects_keywords_images_and_confident_messages(optimizer) -> None:
    assert optimizer.is_high_importance_message(Message(id='a', role=Role.USER, content='I always want code'))
    assert optimizer.is_high_importance_message(Message(id='b', role=Role.ASSISTANT, content='sunset', is_image=True))
    assert optimizer.is_high_importance_message(Message(id='c', role=Role.ASSISTANT, content='ok', confidence=0.9))
    assert not optimizer.is_high_importance_message(Message(id='d', role=Role.USER, content='ok', confidence=0.5))


def test_intent_prompt_truncates_context_to_100_characters(optimizer, conversation) -> None:
    messages = conversation(('user', 'a' * 300), ('assistant', 'b' * 300))

    prompt = optimizer.create_optimized_prompt(Operation.INTENT_CLASSIFICATION, 'draw a cat', messages)

    assert 'a' * 100 in prompt.content
    assert 'a' * 101 not in prompt.content
    assert prompt.strategy == 'minimal_context_classification'
    assert prompt.compression_ratio >= 0


def test_pattern_and_response_prompts_use_their_caps(optimizer, conversation) -> None:
    messages = conversation(('user', 'x' * 400), ('assistant', 'y' * 400))

    pattern_prompt = optimizer.create_optimized_prompt(Operation.PATTERN_ANALYSIS, '', messages, patterns=['likes code'])
    response_prompt = optimizer.create_optimized_prompt(Operation.RESPONSE_GENERATION, 'hi', messages, user_style='brief')

    assert 'x' * 150 in pattern_prompt.content and 'x' * 151 not in pattern_prompt.content
    assert 'Known: likes code' in pattern_prompt.content
    assert 'y' * 200 in response_prompt.content and 'y' * 201 not in response_prompt.content
    assert response_prompt.content.startswith('Style: brief')


def test_compression_ratio_defaults_to_one_for_empty_input(optimizer) -> None:
    prompt = optimizer.create_optimized_prompt(Operation.RESPONSE_GENERATION, '', [])
    assert prompt.compression_ratio == 1.0


def test_model_selection_rules(optimizer) -> None:
    simple_intent = optimizer.select_optimal_model(Operation.INTENT_CLASSIFICATION, 0.2, 800)
    short_context = optimizer.select_optimal_model(Operation.RESPONSE_GENERATION, 0.3, 120)
    complex_request = optimizer.select_optimal_model(Operation.RESPONSE_GENERATION, 0.8, 120)
    long_context = optimizer.select_optimal_model(Operation.PATTERN_ANALYSIS, 0.1, 900)

    assert simple_intent.variant == ModelVariant.LITE
    assert simple_intent.model_id == config.bedrock_llm.lite_model_id
    assert short_context.variant == ModelVariant.LITE
    assert complex_request.variant == ModelVariant.PRIMARY
    assert long_context.variant == ModelVariant.PRIMARY
    assert long_context.model_id == config.bedrock_llm.primary_model_id


def test_cost_and_token_estimates(optimizer, conversation) -> None:
    assert optimizer.estimate_text_tokens('abcde') == 2
    assert optimizer.estimate_tokens(conversation(('user', 'abcd'), ('assistant', 'efgh'))) == 2
    assert optimizer.calculate_cost(1000, ModelVariant.LITE) == pytest.approx(config.bedrock_llm.lite_cost_per_1k_tokens)
    assert optimizer.calculate_cost(2000, ModelVariant.PRIMARY) == pytest.approx(2 * config.bedrock_llm.primary_cost_per_1k_tokens)


def test_usage_metrics_report_savings(optimizer) -> None:
    metrics = optimizer.calculate_usage_metrics(input_tokens=100, output_tokens=50, original_input_tokens=400,
                                                variant=ModelVariant.PRIMARY)

    assert metrics.total_tokens == 150
    assert metrics.optimization_savings > 0


def test_complexity_is_bounded(optimizer, conversation) -> None:
    history = conversation(*[('user', 'q')] * 10)
    text = 'How do I implement and optimize this algorithm for my system architecture? ' * 20 + '???'

    assert 0 <= optimizer.calculate_complexity('hi', []) <= 1
    assert optimizer.calculate_complexity(text, history) == pytest.approx(1.0)


def test_detect_user_style_from_average_length(optimizer, conversation) -> None:
    assert optimizer.detect_user_style(conversation(('user', 'hi'))) == 'casual'
    assert optimizer.detect_user_style(conversation(('user', 'ok'), ('assistant', 'sure'), ('user', 'thx'))) == 'brief'
    assert optimizer.detect_user_style(conversation(('user', 'z' * 150), ('assistant', 'sure'), ('user', 'w' * 150))) == 'detailed'
