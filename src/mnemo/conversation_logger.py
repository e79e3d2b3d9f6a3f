"""Conversation logger for detailed analysis.

Each session gets its own JSONL file with messages, model calls, tool
calls and background extraction outcomes.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


class ConversationLogger:
    """Logs complete conversations for analysis."""

    def __init__(self, log_dir: Path | str) -> None:
        """Initialize the conversation logger.

        Args:
            log_dir: Directory to store logs.
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def log_file(self, session_id: str) -> Path:
        """Get log file path for a session."""
        date_str = datetime.now().strftime("%Y-%m-%d")
        return self.log_dir / f"{date_str}_{session_id}.jsonl"

    def _write(self, session_id: str, entry: dict[str, Any]) -> None:
        """Write an entry to the log file."""
        entry["timestamp"] = datetime.now(timezone.utc).isoformat()
        entry["session_id"] = session_id

        with open(self.log_file(session_id), "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")

    def log_session_start(self, session_id: str, user_id: str, known_facts: int) -> None:
        self._write(session_id, {
            "event": "session_start",
            "user_id": user_id,
            "known_facts": known_facts,
        })

    def log_user_message(self, session_id: str, content: str) -> None:
        self._write(session_id, {
            "event": "user_message",
            "role": "user",
            "content": content,
        })

    def log_assistant_message(self, session_id: str, content: str) -> None:
        """Log an assistant message (final response)."""
        self._write(session_id, {
            "event": "assistant_message",
            "role": "assistant",
            "content": content,
        })

    def log_llm_request(self, session_id: str, messages_count: int, tools_count: int) -> None:
        self._write(session_id, {
            "event": "llm_request",
            "messages_count": messages_count,
            "tools_count": tools_count,
        })

    def log_llm_response(
        self,
        session_id: str,
        has_content: bool,
        tool_calls_count: int,
        usage: dict[str, int] | None = None,
    ) -> None:
        entry: dict[str, Any] = {
            "event": "llm_response",
            "has_content": has_content,
            "tool_calls_count": tool_calls_count,
        }
        if usage:
            entry["usage"] = usage
        self._write(session_id, entry)

    def log_tool_call(
        self,
        session_id: str,
        tool_name: str,
        parameters: dict[str, Any],
        tool_call_id: str | None = None,
    ) -> None:
        """Log a tool call from the LLM."""
        self._write(session_id, {
            "event": "tool_call",
            "tool_name": tool_name,
            "parameters": parameters,
            "tool_call_id": tool_call_id,
        })

    def log_tool_result(
        self,
        session_id: str,
        tool_name: str,
        success: bool,
        data: Any = None,
        error: str | None = None,
        duration_ms: float | None = None,
    ) -> None:
        """Log the result of a tool execution."""
        entry: dict[str, Any] = {
            "event": "tool_result",
            "tool_name": tool_name,
            "success": success,
        }
        if data is not None:
            entry["data"] = str(data)[:2000]  # Truncate long outputs
        if error:
            entry["error"] = error
        if duration_ms is not None:
            entry["duration_ms"] = duration_ms
        self._write(session_id, entry)

    def log_extraction(self, session_id: str, fact_id: str | None) -> None:
        self._write(session_id, {"event": "memory_extraction", "fact_id": fact_id})

    def log_error(self, session_id: str, error: str, context: str | None = None) -> None:
        """Log an error."""
        entry = {
            "event": "error",
            "error": error,
        }
        if context:
            entry["context"] = context
        self._write(session_id, entry)

    def log_session_end(self, session_id: str, reason: str = "normal") -> None:
        self._write(session_id, {"event": "session_end", "reason": reason})
