"""Input validation helpers."""

from teamledger.validation.validator import build_model

__all__ = ["build_model"]
