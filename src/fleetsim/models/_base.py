"""Base model for fleetsim records.

Every record handed to a sink or the enrichment provider inherits from
:class:`FleetBaseModel` which provides:

* ``alias_generator=to_camel`` so snake_case fields serialise to the
  camelCase keys consumers expect (``engine_temp_c`` -> ``engineTempC``).
* ``populate_by_name=True`` so records can be built from either form.
* :meth:`FleetBaseModel.to_record`, the JSON-ready dict given to sinks.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]
"""Annotated type that normalises timestamps to tz-aware UTC."""


def utcnow() -> datetime:
    return datetime.now(UTC)


class FleetBaseModel(BaseModel):
    """Frozen, camelCase-aliased base for all wire-facing records."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
        allow_inf_nan=False,
    )

    def to_record(self) -> dict[str, Any]:
        """Serialise to a JSON-compatible dict with camelCase keys.

        ``None`` fields are dropped so optional sections (``enrichment``,
        ``recentHistory``) only appear when present.
        """
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
