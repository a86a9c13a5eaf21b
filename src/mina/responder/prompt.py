"""Prompt assembly for replies."""

from ..llm.content import Turn
from ..memory.models import RecalledMemory


def drop_leading_assistant_turns(history: list[Turn]) -> list[Turn]:
    """History must open with a user turn."""
    start = 0
    while start < len(history) and history[start].role != "user":
        start += 1
    return history[start:]


def active_participants(
    history: list[Turn],
    author_id: str,
    now: float,
    window: float = 600,
    lookback: int = 15,
) -> list[str]:
    """Users taking part in the conversation, author first.

    A user counts if they spoke in the last ``lookback`` turns or within the
    last ``window`` seconds.
    """
    participants = [author_id]
    seen = {author_id}

    def add(turn: Turn) -> None:
        if turn.role != "user" or turn.attribution is None:
            return
        user_id = turn.attribution.user_id
        if user_id and user_id not in seen:
            seen.add(user_id)
            participants.append(user_id)

    for turn in history[-lookback:] if lookback > 0 else []:
        add(turn)
    for turn in history:
        if now - turn.timestamp <= window:
            add(turn)
    return participants


def participant_names(history: list[Turn]) -> dict[str, str]:
    """Best known display name per user id, latest wins."""
    names: dict[str, str] = {}
    for turn in history:
        attribution = turn.attribution
        if turn.role == "user" and attribution and attribution.user_id:
            name = attribution.display_name or attribution.username
            if name:
                names[attribution.user_id] = name
    return names


def build_system_prompt(
    base_prompt: str,
    participants: list[str],
    memories: dict[str, list[RecalledMemory]],
    names: dict[str, str],
) -> str:
    """Base prompt plus recalled memories and participants.

    Args:
        base_prompt: The configured system prompt.
        participants: Active user ids, author first.
        memories: Recalled memories per user id.
        names: Display names per user id.

    Returns:
        Complete system prompt string.
    """
    prompt = base_prompt

    memory_lines = []
    for user_id in participants:
        recalled = memories.get(user_id)
        if not recalled:
            continue
        memory_lines.append(f"\n**{names.get(user_id, user_id)}:**")
        memory_lines.extend(f"- {m.key}: {m.value}" for m in recalled)
    if memory_lines:
        prompt += "\n\n**Relevant Memories by Participant:**" + "\n".join(memory_lines)

    # Only worth mentioning when more than one person is talking
    if len(participants) > 1:
        listed = "\n".join(f"- {names.get(user_id, user_id)}" for user_id in participants)
        prompt += f"\n\n**Conversation Participants:**\n{listed}"

    return prompt


def conversation_snippet(turns: list[Turn], count: int = 3, width: int = 50) -> str:
    """Short context stored alongside extracted memories."""
    return " | ".join(turn.text[:width] for turn in turns[-count:] if turn.text)
