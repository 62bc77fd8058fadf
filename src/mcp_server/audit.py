"""Audit logging for the MCP server.

Records every tool execution for compliance and debugging:
actor, tool, arguments, timestamp and outcome.
"""

import asyncio
import uuid
from pathlib import Path
from typing import Any

import aiofiles

from shared.logging import get_logger
from shared.models import AuditEntry, McpOptions, Tool, ToolResult

logger = get_logger(__name__)


class AuditLogger:
    """
    Audit logger for tool executions.

    Entries are logged immediately through structlog and buffered for
    batched, append-only writes to a JSON-lines file.
    """

    # Arguments that should be redacted in audit logs
    SENSITIVE_PARAMS = {"password", "token", "secret", "api_key", "apikey", "credential"}

    def __init__(
        self,
        log_path: str = "logs/audit.log",
        enabled: bool = True,
        buffer_size: int = 100
    ) -> None:
        self.log_path = Path(log_path)
        self.enabled = enabled
        self.buffer_size = buffer_size
        self._buffer: list[AuditEntry] = []
        self._lock = asyncio.Lock()

        if self.enabled:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def _redact_sensitive(self, params: dict[str, Any]) -> dict[str, Any]:
        """Redact sensitive arguments, recursing into nested objects."""
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
        tool: Tool,
        arguments: dict[str, Any],
        options: McpOptions,
        result: ToolResult
    ) -> AuditEntry:
        """
        Create an audit entry from tool execution data.

        Args:
            tool: Executed tool
            arguments: Raw tool arguments
            options: Invocation options (actor, tenant, session)
            result: Tool execution result

        Returns:
            Audit entry
        """
        actor = options.actor
        actor_id = None
        if isinstance(actor, dict):
            actor_id = actor.get("id") or actor.get("sub")
        elif actor is not None:
            actor_id = getattr(actor, "id", None) or str(actor)

        return AuditEntry(
            id=str(uuid.uuid4()),
            tool_name=tool.name,
            entity=tool.entity,
            action=tool.action,
            actor_id=str(actor_id) if actor_id is not None else None,
            tenant=str(options.tenant) if options.tenant is not None else None,
            session_id=options.context.get("mcp_session_id"),
            arguments=self._redact_sensitive(arguments),
            status=result.status,
            error=result.error,
            execution_time_ms=result.execution_time_ms,
        )

    async def log(
        self,
        tool: Tool,
        arguments: dict[str, Any],
        options: McpOptions,
        result: ToolResult
    ) -> None:
        """Log a tool execution."""
        if not self.enabled:
            return

        entry = self.create_entry(tool, arguments, options, result)

        logger.info(
            "Tool executed",
            audit_id=entry.id,
            actor=entry.actor_id,
            tool=entry.tool_name,
            entity=entry.entity,
            status=entry.status.value,
            execution_time_ms=entry.execution_time_ms
        )

        async with self._lock:
            self._buffer.append(entry)

            if len(self._buffer) >= self.buffer_size:
                await self._flush()

    async def _flush(self) -> None:
        """Flush buffered entries to file."""
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
            # Keep entries for the next flush
            self._buffer.extend(entries_to_write)

    async def flush(self) -> None:
        """Flush the audit buffer."""
        async with self._lock:
            await self._flush()
