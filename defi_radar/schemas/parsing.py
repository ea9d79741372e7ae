from __future__ import annotations

import logging
from typing import Any, Iterable, TypeVar

from pydantic import BaseModel, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_records(
    model: type[ModelT],
    items: Iterable[Any],
    *,
    label: str,
    logger: logging.Logger | None = None,
) -> list[ModelT]:
    """Validate each item against `model`, dropping the ones that do not match.

    The dropped count is logged once per call at warning level.
    """
    log = logger or logging.getLogger(__name__)
    out: list[ModelT] = []
    dropped = 0
    for item in items:
        if not isinstance(item, dict):
            dropped += 1
            continue
        try:
            out.append(model.model_validate(item))
        except ValidationError:
            dropped += 1
    if dropped:
        log.warning(f"Dropped {dropped} invalid {label} record(s)")
    return out
