# jobmatch/services/match/generation.py
"""
Structured generation: call the model, recover JSON from whatever it returned,
and validate it against a pydantic schema.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from jobmatch.services.common.json_extraction import ExpectedShape, JSONExtractionError, extract_json
from jobmatch.services.match.errors import ErrorType, MatcherValidationError, StructuredOutputError
from jobmatch.services.match.types import ModelCall

logger = logging.getLogger("match.generation")

M = TypeVar("M", bound=BaseModel)

VALIDATION_PREVIEW_CHARS = 200


def _preview(value: Any) -> str:
    text = value if isinstance(value, str) else repr(value)
    return text if len(text) <= VALIDATION_PREVIEW_CHARS else text[:VALIDATION_PREVIEW_CHARS] + "..."


async def generate_structured(
    model_call: ModelCall,
    schema: Type[M],
    *,
    system: str,
    prompt: str,
    provider_options: Optional[Dict[str, Any]] = None,
    expected: ExpectedShape = "object",
) -> M:
    """
    Returns:
        A validated `schema` instance.

    Raises:
        StructuredOutputError: empty output (no_object) or no recoverable JSON (json_parse).
        MatcherValidationError: JSON found but it does not satisfy the schema.
    """
    raw = await model_call(system, prompt, provider_options)

    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise StructuredOutputError("No object generated: model returned empty output", error_type=ErrorType.NO_OBJECT)

    if isinstance(raw, (dict, list)):
        data = raw
    else:
        try:
            data = extract_json(raw, expected)
        except JSONExtractionError as e:
            logger.warning("JSON extraction failed: %s", e.preview)
            raise StructuredOutputError(str(e), error_type=ErrorType.JSON_PARSE, preview=e.preview) from e

    try:
        return schema.model_validate(data)
    except ValidationError as e:
        logger.warning("Model output failed %s validation: %s", schema.__name__, e.error_count())
        raise MatcherValidationError(
            f"Model output does not match {schema.__name__}: {e.errors()[0]['msg'] if e.errors() else e}. "
            f"Preview: {_preview(data)}"
        ) from e
