"""Generate the agent's inner thought about the user's state.

The thought is embedded as the agent_thought channel. It is a 1-2 sentence
observation (emotional state, underlying need, topic shift), not a reply.
"""

from behavior_engine.core.llm import LLMClient
from behavior_engine.core.logging import get_logger

logger = get_logger(__name__)

INNER_THOUGHT_SYSTEM = """You are an AI wellness companion privately observing a conversation.

Write your internal observation, not a reply to the user.

Rules:
- 1-2 sentences
- Focus on: emotional state, underlying needs, topic shifts, or appropriate next behavior
- No greetings, no advice addressed to the user"""

INNER_THOUGHT_USER = """User's message: "{user_message}"
{agent_line}{behavior_line}
What is your internal observation about the user's state, needs, or the conversation direction?

Inner thought:"""


def fallback_thought(user_message: str) -> str:
    return f"User said: {user_message}"


async def generate_inner_thought(
    llm: LLMClient,
    user_message: str,
    last_agent_message: str | None = None,
    current_behavior_id: str | None = None,
) -> str:
    """
    Ask the model for a short observation about the user.

    Args:
        llm: Client used for the completion
        user_message: Latest user message
        last_agent_message: Agent's previous reply, if any
        current_behavior_id: Active behavior, if any

    Returns:
        Thought text. Falls back to "User said: ..." when the call fails or
        returns nothing.
    """
    agent_line = f'Your last response: "{last_agent_message}"\n' if last_agent_message else ""
    behavior_line = f"Current behavior: {current_behavior_id}\n" if current_behavior_id else ""

    try:
        thought = await llm.complete_text(
            system=INNER_THOUGHT_SYSTEM,
            user=INNER_THOUGHT_USER.format(
                user_message=user_message,
                agent_line=agent_line,
                behavior_line=behavior_line,
            ),
            max_tokens=100,
            temperature=0.7,
        )
    except Exception as e:
        logger.warning(f"Inner thought generation failed, using fallback: {e}")
        return fallback_thought(user_message)

    thought = thought.strip()
    return thought or fallback_thought(user_message)
