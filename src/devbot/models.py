"""Shared domain enums."""

from __future__ import annotations

from enum import Enum


class PermissionMode(str, Enum):
    """How much the agent may do without asking first."""

    SAFE = "safe"
    YOLO = "yolo"

    @classmethod
    def parse(cls, value: str | None) -> PermissionMode:
        """Map a stored value to a mode; blank or unknown values mean ``safe``."""

        normalized = (value or "").strip().lower()
        if normalized == cls.YOLO.value:
            return cls.YOLO
        return cls.SAFE
