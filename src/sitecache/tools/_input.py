"""Shared argument validation for tool handlers."""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from sitecache.errors import InvalidInputError

ModelT = TypeVar("ModelT", bound=BaseModel)


def validate_input(model: type[ModelT], suggestion: str, /, **arguments: Any) -> ModelT:
    """Build *model* from raw tool arguments, mapping validation failures to InvalidInputError."""
    try:
        return model(**arguments)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'input'}: {error['msg']}"
            for error in exc.errors()
        )
        raise InvalidInputError(problems, suggestion=suggestion) from exc
