"""Exception types raised by context-engine.

Only configuration errors are surfaced to callers. Malformed JSON and
unparseable timestamps are recovered where they occur and never raise.
"""

from __future__ import annotations

from typing import Any, Optional


class ContextEngineError(Exception):
    """Base class for context-engine errors.

    Attributes:
        error_type: Machine-readable category used by response envelopes
        remediation: Suggested remediation steps
    """

    error_type = "context_engine_error"

    def __init__(self, message: str, remediation: Optional[str] = None):
        self.message = message
        self.remediation = remediation
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "remediation": self.remediation,
        }


class ModelNotFoundError(ContextEngineError):
    """Raised when a model id is referenced that was never registered.

    This is a configuration error and is not retried.

    Attributes:
        model_id: The unknown model id
        available: Model ids registered at the time of the lookup
    """

    error_type = "model_not_found"

    def __init__(
        self,
        model_id: str,
        available: Optional[list[str]] = None,
        remediation: Optional[str] = None,
    ):
        self.model_id = model_id
        self.available = sorted(available or [])
        remediation = remediation or (
            f"Register a profile for '{model_id}' with register_model() "
            "or add a [[models]] table to context-engine.toml. "
            f"Registered models: {', '.join(self.available) or 'none'}."
        )
        super().__init__(f"Model not registered: {model_id}", remediation)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["model_id"] = self.model_id
        data["available"] = self.available
        return data


__all__ = ["ContextEngineError", "ModelNotFoundError"]
