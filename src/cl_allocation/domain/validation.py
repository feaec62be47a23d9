"""Turn loosely-typed fill payloads into FillEvents, one event at a time.

A bad event raises MalformedEventError; the batch it came in keeps going.
"""

import math
from datetime import datetime
from decimal import Decimal
from typing import Any

from src.cl_common.datetime_utils import ensure_utc
from src.cl_common.enums import FillSide
from src.cl_common.errors import MalformedEventError
from src.cl_common.money import isk_to_cents
from src.cl_allocation.domain.models import FillEvent


def _positive_int(name: str, value: Any) -> int:
    if value is None or isinstance(value, bool):
        raise MalformedEventError(f"{name} is missing")
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            raise MalformedEventError(f"{name} must be a whole number, got {value!r}")
        value = int(value)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise MalformedEventError(f"{name} must be an integer, got {value!r}") from None
    if number <= 0:
        raise MalformedEventError(f"{name} must be positive, got {number}")
    return number


def parse_fill(
    side: Any,
    type_id: Any,
    station_id: Any,
    quantity: Any,
    unit_price_isk: Decimal | float | str | None,
    external_ref_id: Any,
    occurred_at: datetime | None,
    character_id: int | None = None,
) -> FillEvent:
    ref = str(external_ref_id).strip() if external_ref_id is not None else ""
    if not ref:
        raise MalformedEventError("external_ref_id is missing")
    try:
        fill_side = FillSide(str(side).upper()) if side is not None else None
    except ValueError:
        fill_side = None
    if fill_side is None:
        raise MalformedEventError(f"{ref}: unknown side {side!r}")
    if unit_price_isk is None:
        raise MalformedEventError(f"{ref}: unit price is missing")
    try:
        price_cents = isk_to_cents(unit_price_isk)
    except ValueError:
        raise MalformedEventError(f"{ref}: invalid unit price {unit_price_isk!r}") from None
    if price_cents < 0:
        raise MalformedEventError(f"{ref}: negative unit price {unit_price_isk!r}")
    if occurred_at is None:
        raise MalformedEventError(f"{ref}: occurred_at is missing")
    return FillEvent(
        side=fill_side.value,
        type_id=_positive_int(f"{ref}: type_id", type_id),
        station_id=_positive_int(f"{ref}: station_id", station_id),
        quantity=_positive_int(f"{ref}: quantity", quantity),
        unit_price_cents=price_cents,
        external_ref_id=ref,
        occurred_at=ensure_utc(occurred_at),
        character_id=character_id,
    )
