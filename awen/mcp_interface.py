"""
MCP Interface Layer using fastmcp as the session transport endpoint.
"""
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from awen.models.core import Message
from awen.services.message_orchestrator import MessageOrchestrator
from awen.utils.config import config
from awen.utils.health_check import get_health_status, get_system_info
from awen.utils.json_utils import to_jsonable
from awen.utils.logging_config import get_logger

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Awen')
orchestrator = MessageOrchestrator()


def _require_session(session_id: str) -> str:
    if not session_id or not session_id.strip():
        raise ValueError('Session ID is required')
    return session_id.strip()


def _parse_history(history: Optional[List[Dict[str, Any]]]) -> List[Message]:
    try:
        return [Message.from_dict(item) for item in history or []]
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f'Invalid conversation history: {e}')


@mcp.tool()
def process_message(content: str, session_id: str, history: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """Process a user message and return the assistant reply with its memory context.

    Args:
        content: User message text
        session_id: Session ID
        history: Prior messages, oldest first ({id, role, content, timestamp, ...})

    Returns:
        Dictionary with message, action_log, memory_insights, patterns,
        predictive_insights, workflow_suggestions, conversation_state and
        next_best_actions. Auxiliary fields are empty when processing failed.

    Raises:
        ValueError: If the session ID or history is invalid
    """
    session_id = _require_session(session_id)
    messages = _parse_history(history)

    result = orchestrator.process_message(content, session_id, messages)

    logger.debug(f'MCP processed message for session {session_id}')
    return to_jsonable(result)


@mcp.tool()
def get_memory_insights(session_id: str) -> Dict[str, Any]:
    """Get persisted patterns (up to 10) and the insight snapshot for a session."""
    return to_jsonable(orchestrator.get_memory_insights(_require_session(session_id)))


@mcp.tool()
def get_conversation_patterns(session_id: str) -> List[Dict[str, Any]]:
    """Get all persisted conversation patterns for a session."""
    return to_jsonable(orchestrator.get_conversation_patterns(_require_session(session_id)))


@mcp.tool()
def get_predictive_insights(session_id: str) -> List[str]:
    """Predict what the user may want next from the session's patterns."""
    return orchestrator.get_predictive_insights(_require_session(session_id))


@mcp.tool()
def reason_about_intent(content: str, session_id: str, history: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """Infer the intent behind a message from history and the session's patterns."""
    session_id = _require_session(session_id)
    return to_jsonable(orchestrator.reason_about_intent(content, session_id, _parse_history(history)))


@mcp.tool()
def get_user_preferences(session_id: str) -> Dict[str, Any]:
    """Get the learned preference profile for a session."""
    return to_jsonable(orchestrator.get_user_preferences(_require_session(session_id)))


@mcp.tool()
def update_user_feedback(message_id: str, helpful: bool, feedback_type: str) -> Dict[str, Any]:
    """Record feedback on an assistant message.

    Args:
        message_id: ID of the assistant message
        helpful: Whether the message was helpful
        feedback_type: response_quality, prediction_accuracy or style_preference
    """
    return orchestrator.record_feedback(message_id, helpful, feedback_type)


@mcp.tool()
def health() -> Dict[str, Any]:
    """Report the health of the model endpoint and the session store."""
    components = get_health_status(orchestrator.llm.llm, orchestrator.store)
    return {
        'healthy': all(status.get('healthy', False) for status in components.values()),
        'components': components,
        'system': get_system_info()
    }


if __name__ == '__main__':
    transport = config.mcp.transport
    host = config.mcp.host
    port = config.mcp.port
    mcp.run(transport=transport, host=host, port=port)
