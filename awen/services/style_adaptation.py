"""
Communication style detection and response-style adaptation.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from ..models.core import Message, ModelVariant, Operation, Role
from ..models.memory import CommunicationStyle, StyleAdaptationResult, StyleName
from ..utils.json_utils import JSONSalvageError, clamp, parse_llm_json
from ..utils.logging_config import get_logger
from .completion import CompletionError, CompletionService

logger = get_logger(__name__)

HEURISTIC_WEIGHT = 0.6
MODEL_WEIGHT = 0.4
KEYWORD_WEIGHT = 0.3
RECENT_USER_MESSAGES = 5
MODEL_SAMPLE_CHARS = 800

NEUTRAL_MODEL_SCORES: Dict[StyleName, float] = {
    StyleName.DIRECT: 0.3,
    StyleName.CASUAL: 0.5,
    StyleName.DETAILED: 0.3,
    StyleName.CREATIVE: 0.2,
    StyleName.TECHNICAL: 0.2,
    StyleName.FORMAL: 0.3,
}


@dataclass(frozen=True)
class StyleLexicon:
    keywords: Tuple[str, ...]
    patterns: Tuple[str, ...]
    response_length: str  # short | medium | long


STYLE_LEXICONS: Dict[StyleName, StyleLexicon] = {
    StyleName.DIRECT: StyleLexicon(keywords=('brief', 'quick', 'summary', 'short', 'simple', 'tldr'),
                                   patterns=('short sentences', 'imperative mood', 'bullet points preference'),
                                   response_length='short'),
    StyleName.CASUAL: StyleLexicon(keywords=('hey', 'thanks', 'cool', 'awesome', 'nice', 'great'),
                                   patterns=('contractions', 'informal language', 'conversational tone'),
                                   response_length='medium'),
    StyleName.DETAILED: StyleLexicon(keywords=('explain', 'elaborate', 'details', 'comprehensive', 'thorough', 'deep'),
                                     patterns=('long sentences', 'requests for examples', 'follow-up questions'),
                                     response_length='long'),
    StyleName.CREATIVE: StyleLexicon(keywords=('innovative', 'creative', 'unique', 'artistic', 'imaginative', 'original'),
                                     patterns=('metaphors', 'analogies', 'storytelling elements'),
                                     response_length='medium'),
    StyleName.TECHNICAL: StyleLexicon(keywords=('implement', 'algorithm', 'architecture', 'system', 'optimize', 'performance'),
                                      patterns=('technical terms', 'specific implementation details', 'code references'),
                                      response_length='long'),
    StyleName.FORMAL: StyleLexicon(keywords=('please', 'kindly', 'would you', 'could you', 'thank you'),
                                   patterns=('complete sentences', 'polite language', 'structured requests'),
                                   response_length='medium'),
}

ADAPTATION_STRATEGIES: Dict[StyleName, str] = {
    StyleName.DIRECT: 'Use concise, actionable language. Provide clear, immediate answers without unnecessary elaboration.',
    StyleName.CASUAL: 'Use friendly, conversational tone. Include casual expressions and maintain approachable language.',
    StyleName.DETAILED: 'Provide comprehensive explanations with examples. Include background context and step-by-step reasoning.',
    StyleName.CREATIVE: 'Use engaging, imaginative language. Include metaphors, analogies, and creative examples.',
    StyleName.TECHNICAL: 'Use precise technical terminology. Include implementation details and technical considerations.',
    StyleName.FORMAL: 'Use professional, polite language. Structure responses clearly with proper formatting.',
}

STYLE_INSTRUCTIONS: Dict[StyleName, str] = {
    StyleName.DIRECT: 'Keep response under 100 words. Use bullet points if listing items.',
    StyleName.CASUAL: "Use friendly, conversational tone. It's okay to use contractions.",
    StyleName.DETAILED: 'Provide thorough explanation with examples. Aim for 150-300 words.',
    StyleName.CREATIVE: 'Use engaging language and creative examples. Make it interesting to read.',
    StyleName.TECHNICAL: 'Include technical details and implementation considerations. Be precise.',
    StyleName.FORMAL: 'Use professional language. Structure response with clear paragraphs.',
}


def empty_scores() -> Dict[StyleName, float]:
    return {style: 0.0 for style in StyleName}


class CommunicationStyleAdapter:
    """Detect how a user communicates and adapt prompts to match."""

    def __init__(self, llm: CompletionService):
        self.llm = llm
        logger.info('Initialized CommunicationStyleAdapter')

    def detect_communication_style(self, messages: Sequence[Message]) -> CommunicationStyle:
        """Detect the dominant communication style of the user.

        Heuristic lexicon scores over the last five user messages are blended
        60/40 with a model rating of the same messages.

        Args:
            messages: Conversation history, oldest first

        Returns:
            CommunicationStyle with name, confidence, characteristics and examples
        """
        if len(messages) < 3:
            return CommunicationStyle(name=StyleName.CASUAL,
                                      confidence=0.5,
                                      characteristics=['insufficient_data'],
                                      examples=[])

        user_messages = [m for m in messages if m.role == Role.USER]
        recent = user_messages[-RECENT_USER_MESSAGES:]

        heuristic_scores = self.calculate_style_scores(recent)
        model_scores = self.perform_model_style_analysis(recent)
        combined = self.combine_analyses(heuristic_scores, model_scores)

        # Strict comparison keeps the first style on ties
        dominant = StyleName.CASUAL
        best = None
        for style in StyleName:
            if best is None or combined[style] > best:
                dominant, best = style, combined[style]

        logger.debug(f'Detected communication style {dominant.value} ({best:.2f})')
        return CommunicationStyle(name=dominant,
                                  confidence=best,
                                  characteristics=self.extract_characteristics(recent, dominant),
                                  examples=[m.content[:100] for m in recent[:2]])

    def adapt_response_style(self, original_prompt: str, detected_style: CommunicationStyle, user_input: str) -> StyleAdaptationResult:
        strategy = self.determine_adaptation_strategy(detected_style, user_input)
        return StyleAdaptationResult(detected_style=detected_style,
                                     adapted_prompt=self.create_style_adapted_prompt(original_prompt, detected_style, strategy),
                                     adaptation_strategy=strategy,
                                     confidence_score=detected_style.confidence)

    def calculate_style_scores(self, messages: Sequence[Message]) -> Dict[StyleName, float]:
        """Score messages against the six style lexicons, normalized by the highest score."""
        scores = empty_scores()

        for message in messages:
            content = message.content.lower()
            word_count = len(content.split(' '))
            sentences = [s for s in re.split(r'[.!?]+', content) if s.strip()]
            avg_sentence_length = sum(len(s.split(' ')) for s in sentences) / len(sentences) if sentences else 0.0
            polite = 'please' in content or 'thank you' in content

            for style, lexicon in STYLE_LEXICONS.items():
                score = sum(1 for keyword in lexicon.keywords if keyword in content) * KEYWORD_WEIGHT

                if lexicon.response_length == 'short' and word_count < 20:
                    score += 0.2
                elif lexicon.response_length == 'long' and word_count > 50:
                    score += 0.2
                elif lexicon.response_length == 'medium' and 20 <= word_count <= 50:
                    score += 0.1

                if style == StyleName.DIRECT and avg_sentence_length < 10:
                    score += 0.2
                if style == StyleName.DETAILED and avg_sentence_length > 15:
                    score += 0.2
                if style == StyleName.FORMAL and polite:
                    score += 0.3

                scores[style] += score

        max_score = max(scores.values())
        if max_score > 0:
            scores = {style: min(value / max_score, 1.0) for style, value in scores.items()}

        return scores

    def perform_model_style_analysis(self, messages: Sequence[Message]) -> Dict[StyleName, float]:
        """Ask the lite model to rate the six styles; neutral scores on any failure."""
        conversation_text = '\n'.join(m.content for m in messages)[:MODEL_SAMPLE_CHARS]
        style_prompt = (f'Analyze communication style in: "{conversation_text}"\n'
                        'Rate 0.0-1.0: {"direct":0.0,"casual":0.0,"detailed":0.0,"creative":0.0,"technical":0.0,"formal":0.0}')

        try:
            response = self.llm.generate_text(style_prompt, model=ModelVariant.LITE, operation=Operation.PATTERN_ANALYSIS)
            parsed = parse_llm_json(response.content, opener='{', flat=True)
            if not isinstance(parsed, dict):
                raise JSONSalvageError('Style rating is not an object')
            return {style: clamp(parsed.get(style.value, 0.0)) for style in StyleName}

        except (CompletionError, JSONSalvageError) as e:
            logger.warning(f'Model style analysis failed, using neutral scores: {e}')
            return dict(NEUTRAL_MODEL_SCORES)

    def combine_analyses(self, heuristic_scores: Dict[StyleName, float], model_scores: Dict[StyleName, float]) -> Dict[StyleName, float]:
        return {
            style: heuristic_scores.get(style, 0.0) * HEURISTIC_WEIGHT + model_scores.get(style, 0.0) * MODEL_WEIGHT
            for style in StyleName
        }

    def extract_characteristics(self, messages: Sequence[Message], style: StyleName) -> List[str]:
        lexicon = STYLE_LEXICONS[style]
        characteristics = [f'Prefers {lexicon.response_length} responses', *lexicon.patterns]

        if messages:
            avg_length = sum(len(m.content) for m in messages) / len(messages)
            if avg_length < 50:
                characteristics.append('Concise communicator')
            if avg_length > 200:
                characteristics.append('Detailed communicator')

        return characteristics[:3]

    def determine_adaptation_strategy(self, style: CommunicationStyle, user_input: str) -> str:
        strategy = ADAPTATION_STRATEGIES[style.name]
        if len(user_input) > 200:
            strategy += " Match the user's detailed communication style."
        return strategy

    def create_style_adapted_prompt(self, original_prompt: str, style: CommunicationStyle, strategy: str) -> str:
        return (f'Communication style: {style.name.value} ({round(style.confidence * 100)}% confidence)\n'
                f'Adaptation strategy: {strategy}\n\n'
                f'Style instruction: {STYLE_INSTRUCTIONS[style.name]}\n\n'
                f'{original_prompt}')
