import pytest

from awen.models.core import ActionType, Message, ModelVariant, Role
from awen.services.completion import CompletionError
from awen.utils.config import config

from conftest import INTENT_PROMPT, FakeBedrockLLM


def test_generate_text_returns_content_and_optimization(completion, fake_llm) -> None:
    response = completion.generate_text('Say hello')

    assert response.content == 'OK'
    assert response.tokens_used == 42
    assert response.optimization is not None
    assert response.optimization.tokens_saved == 0
    assert fake_llm.calls[-1]['messages'] == [{'role': 'user', 'content': [{'text': 'Say hello'}]}]


def test_forced_model_variant_overrides_selection(completion, fake_llm) -> None:
    lite = completion.generate_text('ping', model=ModelVariant.LITE)
    primary = completion.generate_text('ping', model=ModelVariant.PRIMARY)

    assert lite.model == config.bedrock_llm.lite_model_id
    assert primary.model == config.bedrock_llm.primary_model_id
    assert fake_llm.calls[0]['model_id'] == config.bedrock_llm.lite_model_id


def test_history_is_formatted_as_alternating_turns(completion, fake_llm) -> None:
    history = [
        Message(id='1', role=Role.ASSISTANT, content='Welcome back'),
        Message(id='2', role=Role.USER, content='Draw a fox'),
        Message(id='3', role=Role.ASSISTANT, content='**Image Prompt:** fox', is_image=True),
        Message(id='4', role=Role.USER, content='Now a wolf'),
        Message(id='5', role=Role.ASSISTANT, content='Sure'),
    ]

    completion.generate_text('And a bear?', history=history)

    sent = fake_llm.calls[-1]['messages']
    assert [turn['role'] for turn in sent] == ['user', 'assistant', 'user']
    assert sent[0]['content'][0]['text'] == 'Draw a fox\n\nNow a wolf'
    assert sent[-1]['content'][0]['text'] == 'And a bear?'


def test_model_failure_raises_completion_error(make_completion) -> None:
    service = make_completion(FakeBedrockLLM(fail=True))

    with pytest.raises(CompletionError):
        service.generate_text('hello')


def test_classify_intent_parses_model_json(make_completion) -> None:
    llm = FakeBedrockLLM(replies={INTENT_PROMPT: '{"intent": "image", "confidence": 0.92, "reasoning": "Wants a picture"}'})
    result = make_completion(llm).classify_intent('Paint me a castle')

    assert result.intent == ActionType.IMAGE
    assert result.confidence == pytest.approx(0.92)
    assert result.reasoning == 'Wants a picture'
    assert llm.calls[-1]['model_id'] == config.bedrock_llm.primary_model_id
    assert llm.calls[-1]['temperature'] == 0.3


def test_classify_intent_unknown_label_becomes_text(make_completion) -> None:
    llm = FakeBedrockLLM(replies={INTENT_PROMPT: "{'intent': 'dance', 'confidence': 3}"})
    result = make_completion(llm).classify_intent('Do a dance')

    assert result.intent == ActionType.TEXT
    assert result.confidence == 1.0


@pytest.mark.parametrize('text, intent, confidence', [
    ('Create an image of a mountain sunset', ActionType.IMAGE, 0.7),
    ('Tell me a joke about penguins', ActionType.TEXT, 0.6),
])
def test_classify_intent_keyword_fallback(make_completion, text, intent, confidence) -> None:
    result = make_completion(FakeBedrockLLM(fail=True)).classify_intent(text)

    assert result.intent == intent
    assert result.confidence == pytest.approx(confidence)


def test_classify_intent_falls_back_on_unparseable_reply(completion) -> None:
    result = completion.classify_intent('Visualize a city at night')

    assert result.intent == ActionType.IMAGE
    assert result.reasoning == 'Keyword-based classification (fallback)'
