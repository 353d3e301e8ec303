"""
Input Validation

DESIGN DECISION: Caller input is validated in two stages:

STAGE 1 - SCHEMA VALIDATION:
- Pydantic models check types, ranges and formats
- Failures are reported as our ValidationError, never pydantic's

STAGE 2 - SEMANTIC VALIDATION:
- Done by the owning service against the team's data
  (supported currency, finite amount, references exist in the team)

IMPORTANT: Validation NEVER silently fixes issues. Anything rejected here
is rejected before any write.
"""

from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from teamledger.exceptions import ValidationError


M = TypeVar("M", bound=BaseModel)


def build_model(model_cls: type[M], data: Any) -> M:
    """
    Build a model from caller input.

    Raises:
        ValidationError: With pydantic's error list as context
    """
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {model_cls.__name__}",
            {"errors": e.errors(include_url=False, include_context=False, include_input=False)},
        )
