"""Structured JSONL event log.

Diagnostics go through the stdlib ``logging`` module. This module records
the events worth aggregating later (replies, failures, throttling, breaker
trips), one JSON object per line, rotating by size.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class LogEntry:
    """A single event line."""

    timestamp: str
    event: str
    conversation_key: str | None = None
    user_id: str | None = None
    tenant_id: str | None = None
    channel_id: str | None = None
    model: str | None = None
    latency_ms: float | None = None
    tokens_used: int | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Dict form without unset fields."""
        return {k: v for k, v in asdict(self).items() if v is not None and v != {}}


class JSONLLogger:
    """Appends ``LogEntry`` lines to ``log_dir/filename``.

    When the file reaches ``max_size_mb`` it is shifted to
    ``<stem>.1.jsonl`` (older backups move up by one) and at most
    ``backup_count`` backups are kept.
    """

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "events.jsonl",
        max_size_mb: float = 10.0,
        backup_count: int = 5,
    ) -> None:
        if log_dir is None:
            log_dir = Path.home() / ".mina" / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)
        self.backup_count = backup_count

    @property
    def log_path(self) -> Path:
        return self.log_dir / self.filename

    def backup_path(self, index: int) -> Path:
        return self.log_dir / f"{self.log_path.stem}.{index}{self.log_path.suffix}"

    def _rotate(self) -> None:
        oldest = self.backup_path(self.backup_count)
        if oldest.exists():
            oldest.unlink()
        for index in range(self.backup_count - 1, 0, -1):
            source = self.backup_path(index)
            if source.exists():
                source.rename(self.backup_path(index + 1))
        self.log_path.rename(self.backup_path(1))

    def _write(self, entry: LogEntry) -> None:
        path = self.log_path
        if path.exists() and path.stat().st_size >= self.max_size_bytes:
            if self.backup_count > 0:
                self._rotate()
            else:
                path.unlink()

        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), ensure_ascii=False, default=str) + "\n")

    def log(
        self,
        event: str,
        *,
        conversation_key: str | None = None,
        user_id: str | None = None,
        tenant_id: str | None = None,
        channel_id: str | None = None,
        model: str | None = None,
        latency_ms: float | None = None,
        tokens_used: int | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Record ``event``. Unknown keyword fields land under ``extra``."""
        self._write(
            LogEntry(
                timestamp=datetime.now(timezone.utc).isoformat(),
                event=event,
                conversation_key=conversation_key,
                user_id=user_id,
                tenant_id=tenant_id,
                channel_id=channel_id,
                model=model,
                latency_ms=latency_ms,
                tokens_used=tokens_used,
                error=error,
                extra=extra,
            )
        )

    def log_response(
        self,
        *,
        conversation_key: str,
        user_id: str,
        tenant_id: str | None,
        model: str,
        latency_ms: float,
        tokens_used: int,
        tool_calls: int = 0,
    ) -> None:
        self.log(
            "ai_response",
            conversation_key=conversation_key,
            user_id=user_id,
            tenant_id=tenant_id,
            model=model,
            latency_ms=latency_ms,
            tokens_used=tokens_used,
            tool_calls=tool_calls,
        )

    def log_failure(
        self,
        error: str,
        *,
        conversation_key: str | None = None,
        user_id: str | None = None,
        tenant_id: str | None = None,
        recent_failures: int | None = None,
    ) -> None:
        self.log(
            "ai_failure",
            conversation_key=conversation_key,
            user_id=user_id,
            tenant_id=tenant_id,
            error=error,
            recent_failures=recent_failures,
        )

    def log_rate_limited(
        self, *, user_id: str, channel_id: str, tenant_id: str | None, mode: str
    ) -> None:
        self.log(
            "rate_limited",
            user_id=user_id,
            channel_id=channel_id,
            tenant_id=tenant_id,
            mode=mode,
        )

    def log_tenant_disabled(self, *, tenant_id: str, user_id: str) -> None:
        self.log("tenant_disabled", tenant_id=tenant_id, user_id=user_id)

    def log_circuit_open(self, *, endpoint: str, retry_in: float) -> None:
        self.log("circuit_open", endpoint=endpoint, retry_in=round(retry_in, 3))


# Process-wide logger used by the platform adapters
_logger: JSONLLogger | None = None


def get_logger() -> JSONLLogger:
    global _logger
    if _logger is None:
        _logger = JSONLLogger()
    return _logger


def configure_logger(
    log_dir: str | Path | None = None, max_size_mb: float = 10.0, backup_count: int = 5
) -> JSONLLogger:
    """Replace the process-wide logger and return it."""
    global _logger
    _logger = JSONLLogger(log_dir=log_dir, max_size_mb=max_size_mb, backup_count=backup_count)
    return _logger
