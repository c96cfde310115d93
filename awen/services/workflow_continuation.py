"""
Workflow continuation: ranked "what to do next" suggestions for a conversation.
"""

import re
import uuid
from dataclasses import dataclass, replace
from typing import Dict, List, Sequence

from ..models.core import Message, ModelVariant, Operation, Role
from ..models.memory import (ConversationPattern, ConversationState, MemoryInsight, PatternType, Priority, SuggestionType,
                             WorkflowContinuationResult, WorkflowSuggestion)
from ..utils.json_utils import JSONSalvageError, parse_llm_json
from ..utils.logging_config import get_logger
from .completion import CompletionError, CompletionService

logger = get_logger(__name__)

MAX_SUGGESTIONS = 5
MAX_NEXT_ACTIONS = 4
MIN_CONFIDENCE_THRESHOLD = 0.3
DOMINANT_PATTERN_CONFIDENCE = 0.5
MAX_DOMINANT_PATTERNS = 3

CONCLUSION_KEYWORDS = ('thanks', "that's all", 'goodbye', 'that helps')
TRANSITION_KEYWORDS = ('now', 'next', 'switch', 'move on')
DEEP_DIVE_KEYWORDS = ('detail', 'explain more', 'elaborate', 'deep')
CODING_KEYWORDS = ('code', 'function', 'implement')

STATE_BOOSTS: Dict[ConversationState, Dict[SuggestionType, float]] = {
    ConversationState.BEGINNING: {SuggestionType.EXPLORATION: 0.2},
    ConversationState.DEVELOPING: {SuggestionType.NEXT_STEP: 0.3},
    ConversationState.DEEP_DIVE: {SuggestionType.FOLLOW_UP: 0.2},
    ConversationState.TRANSITION: {SuggestionType.RELATED_TOPIC: 0.2},
}

STATE_ACTIONS: Dict[ConversationState, List[str]] = {
    ConversationState.BEGINNING: ['Share your goals or current project', 'Ask a specific question'],
    ConversationState.DEVELOPING: ['Provide more context', 'Ask for examples or clarification'],
    ConversationState.DEEP_DIVE: ['Request more detailed explanation', 'Ask about implementation details'],
    ConversationState.TRANSITION: ['Introduce a new topic', 'Connect to previous discussion'],
    ConversationState.CONCLUSION: ['Ask follow-up questions', 'Start a new conversation thread'],
}

FOLLOW_UP_PROMPT = """Based on this conversation context:
User: "{user}"
Assistant: "{assistant}"

Suggest 2-3 natural follow-up questions or next steps. Format as JSON:
{{"suggestions": [{{"title": "...", "description": "...", "prompt": "..."}}]}}"""


@dataclass(frozen=True)
class WorkflowTemplate:
    type: SuggestionType
    title: str
    description: str
    prompt: str
    base_confidence: float
    priority: Priority


WORKFLOW_TEMPLATES: Dict[str, List[WorkflowTemplate]] = {
    'coding': [
        WorkflowTemplate(type=SuggestionType.NEXT_STEP,
                         title='Review and refactor',
                         description='Clean up and optimize the code',
                         prompt="Let's review and refactor this code for better quality",
                         base_confidence=0.7,
                         priority=Priority.MEDIUM),
        WorkflowTemplate(type=SuggestionType.FOLLOW_UP,
                         title='Add error handling',
                         description='Implement proper error handling',
                         prompt='How should we handle errors in this implementation?',
                         base_confidence=0.8,
                         priority=Priority.HIGH),
    ],
    'research': [
        WorkflowTemplate(type=SuggestionType.EXPLORATION,
                         title='Find related sources',
                         description='Explore additional research materials',
                         prompt='What other sources should we look into for this topic?',
                         base_confidence=0.6,
                         priority=Priority.MEDIUM),
    ],
}


def slugify(text: str) -> str:
    return re.sub(r'\s+', '_', text)


def initial_suggestions() -> WorkflowContinuationResult:
    starter = 'Standard conversation starter'
    return WorkflowContinuationResult(suggestions=[
        WorkflowSuggestion(id='initial_1',
                           type=SuggestionType.EXPLORATION,
                           title='Tell me about your project',
                           description="Share details about what you're working on",
                           prompt="Tell me about your current project or what you'd like to work on",
                           confidence=0.8,
                           reasoning=starter,
                           based_on_patterns=[],
                           priority=Priority.HIGH),
        WorkflowSuggestion(id='initial_2',
                           type=SuggestionType.EXPLORATION,
                           title='Ask a specific question',
                           description='Get help with a particular problem or topic',
                           prompt='What specific question or problem can I help you with?',
                           confidence=0.8,
                           reasoning=starter,
                           based_on_patterns=[],
                           priority=Priority.HIGH),
        WorkflowSuggestion(id='initial_3',
                           type=SuggestionType.EXPLORATION,
                           title='Explore creative ideas',
                           description='Generate and discuss creative concepts',
                           prompt="Let's explore some creative ideas together",
                           confidence=0.7,
                           reasoning=starter,
                           based_on_patterns=[],
                           priority=Priority.MEDIUM),
    ],
                                      conversation_state=ConversationState.BEGINNING,
                                      next_best_actions=[
                                          "Ask about the user's goals", 'Understand the context',
                                          'Identify preferred communication style'
                                      ],
                                      reasoning=['Initial conversation - providing standard starter suggestions'])


class WorkflowContinuation:
    """Suggest how a conversation could continue."""

    def __init__(self, llm: CompletionService):
        self.llm = llm
        logger.info('Initialized WorkflowContinuation')

    def generate_continuation_suggestions(self, messages: Sequence[Message], patterns: Sequence[ConversationPattern],
                                          insights: MemoryInsight) -> WorkflowContinuationResult:
        """Generate ranked continuation suggestions.

        Args:
            messages: Conversation history, oldest first
            patterns: Current conversation patterns
            insights: Memory insight snapshot for this turn

        Returns:
            WorkflowContinuationResult with at most five suggestions
        """
        messages = list(messages)
        if len(messages) < 2:
            return initial_suggestions()

        reasoning = []

        state = self.analyze_conversation_state(messages)
        reasoning.append(f'Conversation state: {state.value}')

        incomplete = self.identify_incomplete_workflows(messages, patterns)
        reasoning.append(f'Found {len(incomplete)} incomplete workflows')

        pattern_suggestions = self.generate_pattern_based_suggestions(patterns)
        reasoning.append(f'Generated {len(pattern_suggestions)} pattern-based suggestions')

        contextual = self.generate_contextual_follow_ups(messages)
        reasoning.append(f'Generated {len(contextual)} contextual suggestions')

        exploration = self.generate_exploration_suggestions(insights)
        reasoning.append(f'Generated {len(exploration)} exploration suggestions')

        ranked = self.rank_suggestions(pattern_suggestions + contextual + exploration + incomplete, state)
        top = [s for s in ranked if s.confidence > MIN_CONFIDENCE_THRESHOLD][:MAX_SUGGESTIONS]

        return WorkflowContinuationResult(suggestions=top,
                                          conversation_state=state,
                                          next_best_actions=self.generate_next_best_actions(top, state),
                                          reasoning=reasoning)

    def generate_workflow_specific_suggestions(self, workflow_type: str, context: str,
                                               preferences: Sequence[str]) -> List[WorkflowSuggestion]:
        """Suggestions from a named workflow template set (coding, research).

        A template is used only when one of the preferences appears in its title
        or in the context.
        """
        suggestions = []
        for template in WORKFLOW_TEMPLATES.get(workflow_type, []):
            if not self.is_relevant_to_context(template, context, preferences):
                continue
            suggestions.append(
                WorkflowSuggestion(id=f'workflow_{uuid.uuid4().hex[:9]}',
                                   type=template.type,
                                   title=template.title,
                                   description=template.description,
                                   prompt=self.personalize_prompt(template.prompt, preferences),
                                   confidence=template.base_confidence,
                                   reasoning=f'Based on {workflow_type} workflow pattern',
                                   based_on_patterns=[workflow_type],
                                   priority=template.priority))
        return suggestions

    def analyze_conversation_state(self, messages: Sequence[Message]) -> ConversationState:
        user_messages = [m for m in messages if m.role == Role.USER]
        if len(user_messages) <= 2:
            return ConversationState.BEGINNING
        if len(user_messages) <= 5:
            return ConversationState.DEVELOPING

        recent = ' '.join(m.content.lower() for m in user_messages[-3:])
        if any(keyword in recent for keyword in CONCLUSION_KEYWORDS):
            return ConversationState.CONCLUSION
        if any(keyword in recent for keyword in TRANSITION_KEYWORDS):
            return ConversationState.TRANSITION
        if any(keyword in recent for keyword in DEEP_DIVE_KEYWORDS):
            return ConversationState.DEEP_DIVE
        return ConversationState.DEVELOPING

    def identify_incomplete_workflows(self, messages: Sequence[Message],
                                      patterns: Sequence[ConversationPattern]) -> List[WorkflowSuggestion]:
        if not any(keyword in p.pattern for p in patterns for keyword in CODING_KEYWORDS):
            return []

        suggestions = []
        recent = ' '.join(m.content.lower() for m in list(messages)[-3:])

        if 'function' in recent and 'test' not in recent:
            suggestions.append(
                WorkflowSuggestion(id='incomplete_test',
                                   type=SuggestionType.NEXT_STEP,
                                   title='Add tests for your function',
                                   description='Write tests to verify your code works correctly',
                                   prompt='Can you help me write tests for the function we just created?',
                                   confidence=0.7,
                                   reasoning='Code was discussed but no testing mentioned',
                                   based_on_patterns=['coding_workflow'],
                                   priority=Priority.HIGH))

        if 'implement' in recent and 'optimize' not in recent:
            suggestions.append(
                WorkflowSuggestion(id='incomplete_optimize',
                                   type=SuggestionType.FOLLOW_UP,
                                   title='Optimize the implementation',
                                   description='Review and improve the code for better performance',
                                   prompt='How can we optimize this implementation for better performance?',
                                   confidence=0.6,
                                   reasoning='Implementation discussed but optimization not covered',
                                   based_on_patterns=['coding_workflow'],
                                   priority=Priority.MEDIUM))

        return suggestions

    def generate_pattern_based_suggestions(self, patterns: Sequence[ConversationPattern]) -> List[WorkflowSuggestion]:
        dominant = sorted((p for p in patterns if p.confidence > DOMINANT_PATTERN_CONFIDENCE),
                          key=lambda p: p.confidence,
                          reverse=True)[:MAX_DOMINANT_PATTERNS]

        suggestions = []
        for pattern in dominant:
            suggestions.extend(self.generate_suggestions_for_pattern(pattern))
        return suggestions

    def generate_suggestions_for_pattern(self, pattern: ConversationPattern) -> List[WorkflowSuggestion]:
        if pattern.type == PatternType.DOMAIN_INTEREST:
            interest = pattern.pattern
            return [
                WorkflowSuggestion(id=f'pattern_{pattern.id}',
                                   type=SuggestionType.RELATED_TOPIC,
                                   title=f'Explore more about {interest}',
                                   description=f'Dive deeper into {interest} based on your interests',
                                   prompt=f'Tell me more about {interest} and how it relates to your goals',
                                   confidence=pattern.confidence * 0.8,
                                   reasoning=f'User has shown interest in {interest}',
                                   based_on_patterns=[pattern.pattern],
                                   priority=Priority.HIGH if pattern.confidence > 0.7 else Priority.MEDIUM)
            ]

        if pattern.type == PatternType.INTENT_SEQUENCE:
            sequence = pattern.pattern
            return [
                WorkflowSuggestion(id=f'sequence_{pattern.id}',
                                   type=SuggestionType.NEXT_STEP,
                                   title='Continue the workflow',
                                   description=f'Follow the established pattern: {sequence}',
                                   prompt="Let's continue with the next step in our workflow",
                                   confidence=pattern.confidence * 0.9,
                                   reasoning=f'Established workflow pattern: {sequence}',
                                   based_on_patterns=[pattern.pattern],
                                   priority=Priority.HIGH)
            ]

        return []

    def generate_contextual_follow_ups(self, messages: Sequence[Message]) -> List[WorkflowSuggestion]:
        """One lite-model call for 2-3 follow-ups; any failure yields none."""
        last_user = next((m for m in reversed(list(messages)) if m.role == Role.USER), None)
        last_assistant = next((m for m in reversed(list(messages)) if m.role == Role.ASSISTANT), None)
        if last_user is None or last_assistant is None:
            return []

        prompt = FOLLOW_UP_PROMPT.format(user=last_user.content, assistant=last_assistant.content[:200])

        try:
            response = self.llm.generate_text(prompt, model=ModelVariant.LITE, operation=Operation.PATTERN_ANALYSIS)
            parsed = parse_llm_json(response.content, opener='{')
        except (CompletionError, JSONSalvageError) as e:
            logger.warning(f'Failed to generate contextual follow-ups: {e}')
            return []

        items = parsed.get('suggestions') if isinstance(parsed, dict) else None
        if not isinstance(items, list):
            return []

        batch = uuid.uuid4().hex[:8]
        suggestions = []
        for index, item in enumerate(items):
            if not isinstance(item, dict) or not item.get('title'):
                continue
            suggestions.append(
                WorkflowSuggestion(id=f'contextual_{batch}_{index}',
                                   type=SuggestionType.FOLLOW_UP,
                                   title=str(item['title']),
                                   description=str(item.get('description', '')),
                                   prompt=str(item.get('prompt', item['title'])),
                                   confidence=0.6,
                                   reasoning='AI-generated contextual follow-up',
                                   based_on_patterns=['conversation_context'],
                                   priority=Priority.MEDIUM))
        return suggestions

    def generate_exploration_suggestions(self, insights: MemoryInsight) -> List[WorkflowSuggestion]:
        top_interests = list(insights.topic_interests)[:2]
        suggestions = [
            WorkflowSuggestion(id=f'explore_{slugify(interest)}',
                               type=SuggestionType.EXPLORATION,
                               title=f'Deep dive into {interest}',
                               description=f'Explore {interest} in greater detail',
                               prompt=f"I'd like to explore {interest} in more depth. What aspects interest you most?",
                               confidence=0.5,
                               reasoning=f'Based on your interest in {interest}',
                               based_on_patterns=['topic_interest'],
                               priority=Priority.LOW) for interest in top_interests
        ]

        if len(top_interests) >= 2:
            first, second = top_interests
            suggestions.append(
                WorkflowSuggestion(id='cross_domain',
                                   type=SuggestionType.EXPLORATION,
                                   title=f'Connect {first} and {second}',
                                   description='Explore how these topics relate to each other',
                                   prompt=f'How do {first} and {second} connect? Are there interesting intersections?',
                                   confidence=0.4,
                                   reasoning='Encouraging cross-domain thinking',
                                   based_on_patterns=['topic_interest'],
                                   priority=Priority.LOW))

        return suggestions

    def rank_suggestions(self, suggestions: Sequence[WorkflowSuggestion], state: ConversationState) -> List[WorkflowSuggestion]:
        """Sort boosted copies by priority and confidence; the given suggestions are left unchanged."""
        boosts = STATE_BOOSTS.get(state, {})
        boosted = [replace(s, confidence=min(s.confidence + boosts.get(s.type, 0.0), 1.0)) for s in suggestions]

        return sorted(boosted, key=lambda s: (s.priority.rank, s.confidence), reverse=True)

    def generate_next_best_actions(self, suggestions: Sequence[WorkflowSuggestion], state: ConversationState) -> List[str]:
        actions = []
        if suggestions:
            actions.append(f'Try: "{suggestions[0].title}"')
        actions.extend(STATE_ACTIONS.get(state, []))
        return actions[:MAX_NEXT_ACTIONS]

    def is_relevant_to_context(self, template: WorkflowTemplate, context: str, preferences: Sequence[str]) -> bool:
        context = context.lower()
        title = template.title.lower()
        return any(p.lower() in title or p.lower() in context for p in preferences)

    def personalize_prompt(self, prompt: str, preferences: Sequence[str]) -> str:
        if 'detailed' in preferences:
            return f'{prompt} Please provide detailed information.'
        if 'concise' in preferences:
            return f'{prompt} Keep it brief and to the point.'
        return prompt
