"""Fact extraction from conversations using the extraction model."""

import json
import logging
import re
from typing import Any

from ..errors import ExtractionParseError
from ..llm.client import ResilientModelClient
from ..llm.content import Turn
from .models import MemoryFact

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """Analyze this conversation and extract 0-3 important facts worth remembering long-term.
Only extract clearly stated information (user preferences, names, important events, recurring topics).
Ignore casual greetings and temporary information.

Conversation:
{conversation}

Return ONLY a valid JSON array (no markdown, no explanation):
[
  {{"key": "fact_name", "value": "fact_value", "importance": 1-10, "memory_type": "user|guild|topic"}}
]

If nothing is worth remembering, return: []"""

_FENCE = re.compile(r"```(?:json)?\s*\n?|```")


def format_transcript(turns: list[Turn]) -> str:
    """Render turns as 'speaker: text' lines."""
    lines = []
    for turn in turns:
        text = turn.text
        if not text:
            continue
        if turn.role == "assistant":
            lines.append(f"assistant: {text}")
        elif turn.attribution and turn.attribution.display_name:
            lines.append(f"{turn.attribution.display_name}: {text}")
        else:
            lines.append(f"user: {text}")
    return "\n".join(lines)


def parse_facts(content: str, max_facts: int = 3) -> list[MemoryFact]:
    """Parse the model's reply into facts.

    Raises:
        ExtractionParseError: The reply is not JSON or not a list of facts.
    """
    json_str = _FENCE.sub("", content).strip()
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise ExtractionParseError(f"Not valid JSON: {e}") from e

    # Some models wrap the list in an object
    if isinstance(data, dict) and isinstance(data.get("facts"), list):
        data = data["facts"]
    if not isinstance(data, list):
        raise ExtractionParseError(f"Expected a JSON array, got {type(data).__name__}")

    facts = []
    for item in data:
        if not _is_valid_item(item):
            logger.debug(f"Skipping invalid fact item: {item!r}")
            continue
        facts.append(
            MemoryFact(
                key=item["key"].strip(),
                value=item["value"].strip(),
                importance=item.get("importance", 5),
                memory_type=item.get("memory_type") or item.get("memoryType") or "user",
            )
        )
    return facts[:max_facts]


def _is_valid_item(item: Any) -> bool:
    return (
        isinstance(item, dict)
        and isinstance(item.get("key"), str)
        and isinstance(item.get("value"), str)
        and bool(item["key"].strip())
        and bool(item["value"].strip())
    )


class FactExtractor:
    """Extracts memorable facts from recent turns."""

    def __init__(
        self,
        client: ResilientModelClient,
        model: str | None = None,
        min_turns: int = 3,
        window: int = 10,
        max_facts: int = 3,
    ) -> None:
        """Initialize the extractor.

        Args:
            client: The model client for completions.
            model: The model to use for extraction (client default if None).
            min_turns: Fewer turns than this are not worth analyzing.
            window: How many of the most recent turns to analyze.
            max_facts: Upper bound on facts returned.
        """
        self.client = client
        self.model = model
        self.min_turns = min_turns
        self.window = window
        self.max_facts = max_facts

    async def extract(self, turns: list[Turn]) -> list[MemoryFact]:
        """Extract facts from a conversation.

        Returns:
            Extracted facts, empty if none found or on any error.
        """
        if len(turns) < self.min_turns:
            return []

        transcript = format_transcript(turns[-self.window:])
        if not transcript:
            return []

        try:
            content = await self.client.complete(
                EXTRACTION_PROMPT.format(conversation=transcript),
                model=self.model,
                temperature=0.1,
            )
            facts = parse_facts(content, self.max_facts)
        except ExtractionParseError as e:
            logger.warning(f"Failed to parse extraction response: {e}")
            return []
        except Exception as e:
            logger.warning(f"Fact extraction failed: {e}")
            return []

        logger.debug(f"Extracted {len(facts)} facts from conversation")
        return facts
