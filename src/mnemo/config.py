"""Configuration for the agent shell.

Values come from dataclass defaults, overridable through ``MNEMO_*``
environment variables (``.env`` is loaded by the entry point).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from .retry import RetryPolicy

DEFAULT_MODEL = "llama-3.1-70b-versatile"


@dataclass
class MemoryExpiryConfig:
    """Retention policy for long-term memory facts."""

    enabled: bool = True
    max_memories_per_user: int = 100
    max_age_days: int = 90
    min_importance: float = 0.3
    cleanup_on_startup: bool = True


@dataclass
class AgentConfig:
    """Configuration for a session runtime."""

    model: str = DEFAULT_MODEL
    known_context_limit: int = 5
    completion_timeout: float = 60.0
    tool_timeout: float = 30.0
    extraction_enabled: bool = True
    extracted_importance: float = 1.5
    min_fact_length: int = 4
    max_fact_length: int = 500


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Everything needed to wire a RuntimeRegistry."""

    db_path: Path = field(default_factory=lambda: Path.home() / ".mnemo" / "mnemo.db")
    groq_api_key: str | None = None
    log_dir: Path | None = None
    background_workers: int = 4
    agent: AgentConfig = field(default_factory=AgentConfig)
    expiry: MemoryExpiryConfig = field(default_factory=MemoryExpiryConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from environment variables.

        Args:
            env: Mapping to read from. Defaults to ``os.environ``.

        Returns:
            Settings with any recognized overrides applied.

        Raises:
            ValueError: If a numeric variable cannot be parsed.
        """
        env = os.environ if env is None else env
        settings = cls()

        if "MNEMO_DB_PATH" in env:
            settings.db_path = Path(env["MNEMO_DB_PATH"]).expanduser()
        if "MNEMO_LOG_DIR" in env:
            settings.log_dir = Path(env["MNEMO_LOG_DIR"]).expanduser()
        if "MNEMO_BACKGROUND_WORKERS" in env:
            settings.background_workers = int(env["MNEMO_BACKGROUND_WORKERS"])
        settings.groq_api_key = env.get("GROQ_API_KEY")

        agent = settings.agent
        agent.model = env.get("MNEMO_MODEL", agent.model)
        if "MNEMO_COMPLETION_TIMEOUT" in env:
            agent.completion_timeout = float(env["MNEMO_COMPLETION_TIMEOUT"])
        if "MNEMO_TOOL_TIMEOUT" in env:
            agent.tool_timeout = float(env["MNEMO_TOOL_TIMEOUT"])
        if "MNEMO_EXTRACTION" in env:
            agent.extraction_enabled = _env_bool(env["MNEMO_EXTRACTION"])

        expiry = settings.expiry
        if "MNEMO_MEMORY_EXPIRY" in env:
            expiry.enabled = _env_bool(env["MNEMO_MEMORY_EXPIRY"])
        if "MNEMO_MAX_MEMORIES_PER_USER" in env:
            expiry.max_memories_per_user = int(env["MNEMO_MAX_MEMORIES_PER_USER"])
        if "MNEMO_MAX_AGE_DAYS" in env:
            expiry.max_age_days = int(env["MNEMO_MAX_AGE_DAYS"])
        if "MNEMO_MIN_IMPORTANCE" in env:
            expiry.min_importance = float(env["MNEMO_MIN_IMPORTANCE"])
        if "MNEMO_CLEANUP_ON_STARTUP" in env:
            expiry.cleanup_on_startup = _env_bool(env["MNEMO_CLEANUP_ON_STARTUP"])

        defaults = settings.retry
        settings.retry = RetryPolicy(
            max_attempts=int(env.get("MNEMO_RETRY_ATTEMPTS", defaults.max_attempts)),
            initial_delay=float(
                env.get("MNEMO_RETRY_INITIAL_DELAY", defaults.initial_delay)
            ),
            max_delay=float(env.get("MNEMO_RETRY_MAX_DELAY", defaults.max_delay)),
            backoff_multiplier=defaults.backoff_multiplier,
            jitter=defaults.jitter,
        )

        return settings
