# laudo_core/common/api/params.py
from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from django.utils.dateparse import parse_date, parse_datetime
from rest_framework.exceptions import ValidationError


def uuid_or_none(value: str | None, field_name: str) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError({field_name: "Invalid UUID"})


def date_or_none(value: str | None, field_name: str) -> date | None:
    if not value:
        return None
    parsed = None
    try:
        parsed = parse_date(value)
        if parsed is None:
            dt = parse_datetime(value)
            parsed = dt.date() if isinstance(dt, datetime) else None
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError({field_name: "Invalid date (expected YYYY-MM-DD)."})
    return parsed


def bool_or_none(value: str | None, field_name: str) -> bool | None:
    if value is None or value == "":
        return None
    v = str(value).strip().lower()
    if v in ("1", "true", "yes", "sim"):
        return True
    if v in ("0", "false", "no", "nao", "não"):
        return False
    raise ValidationError({field_name: "Invalid boolean."})
