"""
Exception hierarchy for the arbitrage engine.

Quote misses during route scanning are not exceptions: the quote client
returns None and the scanner skips the candidate. Everything below is raised
where a caller has to react.
"""
from typing import Any, Dict, Optional


class ArbEngineError(Exception):
    """Base exception for all engine errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(ArbEngineError, ValueError):
    """Malformed numeric input or configuration (rejected before any request)."""


class ValidationError(ArbEngineError, ValueError):
    """A combo step or route is missing required fields or is malformed."""


class BuildError(ArbEngineError):
    """A multi-step plan could not be completed."""

    def __init__(
        self,
        message: str,
        step_index: int,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(f"{message} at step {step_index}", details)
        self.step_index = step_index


class ComboStateError(ArbEngineError):
    """Operation not allowed in the combo's current state."""

    def __init__(self, message: str, state: Optional[str] = None):
        super().__init__(message, {"state": state} if state else None)
        self.state = state
