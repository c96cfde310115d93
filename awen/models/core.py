"""
Core data models for conversations, sessions and orchestration audit records.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..utils.json_utils import clamp
from ..utils.timestamp_utils import now, parse_datetime
from .memory import (ContextualReasoning, ConversationPattern, ConversationState, MemoryInsight, WorkflowSuggestion)


class Role(str, Enum):
    USER = 'user'
    ASSISTANT = 'assistant'


class ActionType(str, Enum):
    """Response path chosen for a message; doubles as the classified intent."""
    TEXT = 'text'
    IMAGE = 'image'
    IMAGE_PROMPT = 'image_prompt'
    CLARIFY = 'clarify'
    CONTEXTUAL_REASONING = 'contextual_reasoning'


class Operation(str, Enum):
    INTENT_CLASSIFICATION = 'intent_classification'
    PATTERN_ANALYSIS = 'pattern_analysis'
    RESPONSE_GENERATION = 'response_generation'


class ModelVariant(str, Enum):
    PRIMARY = 'primary'
    LITE = 'lite'


# Labels recorded as the model for responses that did not come from a model call
PROMPT_GENERATOR = 'prompt-generator'
PLACEHOLDER_GENERATOR = 'placeholder-generator'
FALLBACK_MODEL = 'fallback'


@dataclass
class OptimizationRecord:
    strategy: str
    tokens_saved: int
    estimated_cost: float
    reasoning: str


@dataclass
class ActionLog:
    """Audit trail of one orchestration pass. Write-once, surfaced to the client only."""
    timestamp: datetime
    action: ActionType
    input: str
    output: str
    model_used: str
    confidence: float
    processing_time: int
    contextual_reasoning: Optional[ContextualReasoning] = None
    memory_insights: Optional[MemoryInsight] = None
    conversation_patterns: List[ConversationPattern] = field(default_factory=list)
    reasoning_chain: List[str] = field(default_factory=list)
    optimization: Optional[OptimizationRecord] = None


@dataclass(frozen=True)
class Message:
    """A single chat message. Immutable once created."""
    id: str
    role: Role
    content: str
    timestamp: datetime = field(default_factory=now)
    is_image: bool = False
    intent: Optional[ActionType] = None
    confidence: Optional[float] = None
    model_used: Optional[str] = None
    processing_time: Optional[int] = None
    action_log: Optional[ActionLog] = None

    @classmethod
    def create(cls, role: Role, content: str, **kwargs) -> 'Message':
        prefix = 'user' if role == Role.USER else 'ai'
        return cls(id=f'{prefix}_{uuid.uuid4().hex[:12]}', role=role, content=content, **kwargs)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Message':
        """Build a message from transport data.

        Accepts either ``role`` or the client's ``type`` key for the author.
        """
        role = Role(data.get('role') or data.get('type') or Role.USER.value)
        intent = data.get('intent')
        confidence = data.get('confidence')
        return cls(id=str(data.get('id') or f'msg_{uuid.uuid4().hex[:12]}'),
                   role=role,
                   content=str(data.get('content', '')),
                   timestamp=parse_datetime(data.get('timestamp')),
                   is_image=bool(data.get('is_image', data.get('isImage', False))),
                   intent=ActionType(intent) if intent else None,
                   confidence=clamp(confidence) if confidence is not None else None,
                   model_used=data.get('model_used', data.get('modelUsed')),
                   processing_time=data.get('processing_time', data.get('processingTime')))


@dataclass
class GalleryImage:
    id: str
    content: str
    title: str
    added_at: datetime = field(default_factory=now)
    source_message_id: Optional[str] = None


@dataclass
class ConversationSession:
    """A chat session. Owns its messages and gallery images exclusively."""
    id: str
    title: str
    messages: List[Message] = field(default_factory=list)
    gallery_images: List[GalleryImage] = field(default_factory=list)
    created_at: datetime = field(default_factory=now)
    updated_at: datetime = field(default_factory=now)

    def add_message(self, message: Message) -> None:
        self.messages.append(message)
        if message.is_image and message.role == Role.ASSISTANT:
            self.gallery_images.append(
                GalleryImage(id=f'img_{uuid.uuid4().hex[:12]}',
                             content=message.content,
                             title=message.content.splitlines()[0][:60] if message.content else 'Image',
                             source_message_id=message.id))
        self.updated_at = now()

    def clear(self) -> None:
        """Drop every owned message and gallery image."""
        self.messages.clear()
        self.gallery_images.clear()
        self.updated_at = now()


@dataclass
class IntentClassification:
    intent: ActionType
    confidence: float
    reasoning: str

    def __post_init__(self):
        self.confidence = clamp(self.confidence)


@dataclass
class ProcessResult:
    """Bundle returned to the transport for one processed message."""
    message: Message
    action_log: Optional[ActionLog] = None
    memory_insights: Optional[MemoryInsight] = None
    patterns: List[ConversationPattern] = field(default_factory=list)
    predictive_insights: List[str] = field(default_factory=list)
    workflow_suggestions: List[WorkflowSuggestion] = field(default_factory=list)
    conversation_state: ConversationState = ConversationState.BEGINNING
    next_best_actions: List[str] = field(default_factory=list)
