"""Exception hierarchy for the nudge engine."""

from __future__ import annotations

from typing import Optional


class NudgeEngineError(Exception):
    """Base class for all nudge-engine errors."""


class ConfigError(NudgeEngineError):
    """Raised when configuration is missing or invalid."""


class StoreError(NudgeEngineError):
    """Raised when the runtime store cannot be read or written."""


class PushSendError(NudgeEngineError):
    """Raised by a push channel when a single send attempt fails."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
