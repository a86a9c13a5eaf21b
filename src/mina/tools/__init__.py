"""Native tool interface and registry."""

from .base import Tool, ToolContext, ToolResult
from .registry import ToolRegistry

__all__ = [
    "Tool",
    "ToolContext",
    "ToolResult",
    "ToolRegistry",
]
