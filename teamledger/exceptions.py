"""
Error Taxonomy

Every failure in the core is scoped to one entity operation and is one of:

- ValidationError: malformed or out-of-range input, rejected before any write
- ConflictError:   uniqueness or state-machine violation, stale version
- DependencyError: an external collaborator timed out or failed
- NotFoundError:   the entity does not exist in the caller's team

DESIGN DECISION: Errors carry a context dict so callers (and the structured
log) can see which team/entity was involved without parsing the message.
"""

from typing import Any, Optional


class LedgerError(Exception):
    """Base exception for all core errors."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = {
            "error": type(self).__name__,
            "message": self.message,
        }
        if self.context:
            result["context"] = self.context
        return result


class ValidationError(LedgerError):
    """Input rejected before any write."""
    pass


class ConflictError(LedgerError):
    """Uniqueness, version or state-machine violation."""
    pass


class DependencyError(LedgerError):
    """External collaborator timeout or failure."""

    def __init__(
        self,
        service: str,
        message: str,
        context: Optional[dict[str, Any]] = None,
    ):
        self.service = service
        super().__init__(message, {"service": service, **(context or {})})


class NotFoundError(LedgerError):
    """Entity not found within the caller's team."""
    pass
