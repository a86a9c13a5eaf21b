"""Routes AI task types to model identifiers."""

import logging
from dataclasses import dataclass
from enum import Enum

from .config import RouterConfig

logger = logging.getLogger(__name__)


class TaskType(Enum):
    """Kinds of work dispatched to a model."""

    CHAT = "chat"
    EMBEDDING = "embedding"
    EXTRACTION = "extraction"
    REASONING = "reasoning"


@dataclass(frozen=True)
class ModelSelection:
    """Model chosen for a task."""

    model: str
    task_type: TaskType


class ModelRouter:
    """Maps task types to configured models.

    The reasoning model is optional; when it is not configured, reasoning
    tasks run on the chat model.
    """

    def __init__(self, config: RouterConfig | None = None) -> None:
        config = config or RouterConfig()

        for name in ("chat_model", "embedding_model", "extraction_model"):
            value = getattr(config, name)
            if not value or not value.strip():
                raise ValueError(f"{name} is required and cannot be empty")
        if config.reasoning_model is not None and not config.reasoning_model.strip():
            raise ValueError("reasoning_model cannot be blank when provided")

        self._models = {
            TaskType.CHAT: config.chat_model,
            TaskType.EMBEDDING: config.embedding_model,
            TaskType.EXTRACTION: config.extraction_model,
        }
        self._reasoning_model = config.reasoning_model

    def get_model(self, task_type: TaskType | str) -> ModelSelection:
        """Get the model for a task type.

        Args:
            task_type: A TaskType or its string value.

        Returns:
            The selected model. Unknown task types fall back to chat.
        """
        try:
            task = TaskType(task_type)
        except ValueError:
            logger.warning(f"Unknown task type: {task_type}, falling back to chat model")
            return ModelSelection(self._models[TaskType.CHAT], TaskType.CHAT)

        if task is TaskType.REASONING:
            return ModelSelection(
                self._reasoning_model or self._models[TaskType.CHAT], task
            )
        return ModelSelection(self._models[task], task)

    def has_reasoning_model(self) -> bool:
        """Check if a dedicated reasoning model is configured."""
        return self._reasoning_model is not None

    def routing_summary(self) -> dict[str, str]:
        """Current routing, for display."""
        chat = self._models[TaskType.CHAT]
        return {
            "chat": chat,
            "embedding": self._models[TaskType.EMBEDDING],
            "extraction": self._models[TaskType.EXTRACTION],
            "reasoning": self._reasoning_model or f"{chat} (fallback)",
        }
