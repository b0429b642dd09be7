"""Runtime configuration for the relay, the agent executor and the queue."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

_DEFAULT_STATE_FILE = Path.home() / ".devbot" / "state.json"


@dataclass(slots=True)
class AgentSettings:
    """Agent CLI invocation settings."""

    command: str = "claude"
    model: str = "sonnet"
    timeout_seconds: int = 600


@dataclass(slots=True)
class QueueSettings:
    """Per-conversation queue settings."""

    capacity: int = 100


@dataclass(slots=True)
class ProgressSettings:
    """Progress card throttling."""

    first_delay_seconds: float = 5.0
    interval_seconds: float = 10.0
    max_chars: int = 1000


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    state_file: Path = _DEFAULT_STATE_FILE
    work_root: Path = field(default_factory=Path.home)
    allowed_user_ids: tuple[str, ...] = ()
    shutdown_grace_seconds: int = 30
    agent: AgentSettings = field(default_factory=AgentSettings)
    queue: QueueSettings = field(default_factory=QueueSettings)
    progress: ProgressSettings = field(default_factory=ProgressSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from ``DEVBOT_*`` environment variables."""

        return cls._build({})

    @classmethod
    def from_file(cls, path: Path) -> Settings:
        """Load settings from a YAML file; environment variables fill the blanks."""

        try:
            with path.open(encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as error:
            raise ValueError(f"Invalid YAML config {path}: {error}") from error
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping.")
        return cls._build(data)

    @classmethod
    def load(cls, config_path: Path | None = None) -> Settings:
        if config_path is None:
            return cls.from_env()
        return cls.from_file(config_path)

    @classmethod
    def _build(cls, data: dict[str, Any]) -> Settings:
        home = Path.home()
        work_root = _pick(data, "work_root", "DEVBOT_WORK_ROOT")
        state_file = _pick(data, "state_file", "DEVBOT_STATE_FILE")
        return cls(
            state_file=Path(state_file).expanduser() if state_file else _DEFAULT_STATE_FILE,
            work_root=Path(work_root).expanduser() if work_root else home,
            allowed_user_ids=_collect_user_ids(data),
            shutdown_grace_seconds=_pick_int(
                data,
                "shutdown_grace_seconds",
                "DEVBOT_SHUTDOWN_GRACE_SECONDS",
                default=30,
                minimum=0,
            ),
            agent=AgentSettings(
                command=_pick(data, "claude_path", "DEVBOT_CLAUDE_PATH") or "claude",
                model=_pick(data, "claude_model", "DEVBOT_CLAUDE_MODEL") or "sonnet",
                timeout_seconds=_pick_int(
                    data,
                    "claude_timeout",
                    "DEVBOT_CLAUDE_TIMEOUT",
                    default=600,
                ),
            ),
            queue=QueueSettings(
                capacity=_pick_int(data, "queue_capacity", "DEVBOT_QUEUE_CAPACITY", default=100),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for unusable values."""

        if not self.agent.command.strip():
            raise ValueError("DEVBOT_CLAUDE_PATH must not be empty.")
        if self.agent.timeout_seconds <= 0:
            raise ValueError("DEVBOT_CLAUDE_TIMEOUT must be > 0.")
        if self.queue.capacity <= 0:
            raise ValueError("DEVBOT_QUEUE_CAPACITY must be > 0.")
        if self.shutdown_grace_seconds < 0:
            raise ValueError("DEVBOT_SHUTDOWN_GRACE_SECONDS must be >= 0.")
        if not self.work_root.is_absolute():
            raise ValueError(f"DEVBOT_WORK_ROOT must be an absolute path: {self.work_root}")


def _pick(data: dict[str, Any], key: str, env_name: str) -> str:
    value = data.get(key)
    if value is not None and str(value).strip():
        return str(value).strip()
    return os.getenv(env_name, "").strip()


def _pick_int(
    data: dict[str, Any],
    key: str,
    env_name: str,
    *,
    default: int,
    minimum: int = 1,
) -> int:
    value = data.get(key)
    if value is not None:
        if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
            raise ValueError(f"Invalid integer value for {key}: {value!r} (must be >= {minimum})")
        return value
    raw = os.getenv(env_name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {env_name}: {raw!r}") from error


def _collect_user_ids(data: dict[str, Any]) -> tuple[str, ...]:
    raw = data.get("allowed_user_ids")
    if isinstance(raw, list) and raw:
        values = [str(item) for item in raw]
    else:
        values = os.getenv("DEVBOT_ALLOWED_USER_IDS", "").split(",")
    deduped: list[str] = []
    for value in values:
        normalized = value.strip()
        if normalized and normalized not in deduped:
            deduped.append(normalized)
    return tuple(deduped)
