"""Audit logging for tool calls.

Every tool invocation that reaches a known tool is recorded: caller,
tool, arguments (redacted), outcome and latency. Entries go to the
structured log immediately and are appended to a JSON-lines file in
batches.
"""

import asyncio
import uuid
from pathlib import Path
from typing import Any, Optional

import aiofiles

from shared.logging import get_logger
from shared.models import AuditEntry, CallStatus, ToolDefinition

logger = get_logger(__name__)


class AuditLogger:
    """Buffered JSON-lines audit trail for ``tools/call``."""

    # Argument names whose values never reach the audit file
    SENSITIVE_PARAMS = {"password", "token", "secret", "api_key", "apikey", "credential"}

    def __init__(
        self,
        log_path: str = "logs/audit.log",
        enabled: bool = True,
        buffer_size: int = 100,
        max_pending: int = 10_000,
    ) -> None:
        self.log_path = Path(log_path)
        self.enabled = enabled
        self.buffer_size = buffer_size
        self.max_pending = max(max_pending, buffer_size)
        self._buffer: list[AuditEntry] = []
        self._lock = asyncio.Lock()

        if self.enabled:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def _redact_sensitive(self, params: dict[str, Any]) -> dict[str, Any]:
        redacted = {}
        for key, value in params.items():
            if key.lower() in self.SENSITIVE_PARAMS:
                redacted[key] = "[REDACTED]"
            elif isinstance(value, dict):
                redacted[key] = self._redact_sensitive(value)
            else:
                redacted[key] = value
        return redacted

    def create_entry(
        self,
        tool: ToolDefinition,
        arguments: dict[str, Any],
        status: CallStatus,
        user_id: Optional[str] = None,
        rpc_id: Any = None,
        error: Optional[str] = None,
        execution_time_ms: float = 0,
    ) -> AuditEntry:
        return AuditEntry(
            id=str(uuid.uuid4()),
            rpc_id=rpc_id,
            user_id=user_id,
            tool_name=tool.name,
            http_method=tool.http_method,
            arguments=self._redact_sensitive(arguments),
            status=status,
            error=error,
            execution_time_ms=execution_time_ms,
        )

    async def log(self, entry: AuditEntry) -> None:
        if not self.enabled:
            return

        logger.info(
            "Tool call audited",
            audit_id=entry.id,
            user=entry.user_id,
            tool=entry.tool_name,
            status=entry.status.value,
            execution_time_ms=round(entry.execution_time_ms, 2),
        )

        async with self._lock:
            self._buffer.append(entry)

            if len(self._buffer) >= self.buffer_size:
                await self._flush()

    async def _flush(self) -> None:
        if not self._buffer:
            return

        entries_to_write = self._buffer.copy()
        self._buffer.clear()

        try:
            async with aiofiles.open(self.log_path, "a") as f:
                for entry in entries_to_write:
                    await f.write(entry.model_dump_json() + "\n")
        except OSError as e:
            logger.error("Failed to write audit log", error=str(e))
            # Keep them for the next flush, oldest first out when over the cap
            self._buffer[:0] = entries_to_write
            overflow = len(self._buffer) - self.max_pending
            if overflow > 0:
                del self._buffer[:overflow]
                logger.warning("Dropped audit entries", dropped=overflow, pending=len(self._buffer))

    async def flush(self) -> None:
        async with self._lock:
            await self._flush()

    @property
    def pending(self) -> int:
        return len(self._buffer)
