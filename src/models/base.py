"""Shared Pydantic base models and utilities."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    from datetime import timezone

    return datetime.now(timezone.utc)


class ForelaBase(BaseModel):
    """Base model with shared config for all Forela schemas.

    Fields are snake_case in Python and camelCase on the wire, matching the
    shape the web client already consumes (``heartRate``, ``durationHours``).
    """

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
        alias_generator=to_camel,
    )
