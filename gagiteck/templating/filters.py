"""Pipe filters available inside template expressions."""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel

FilterFunc = Callable[[Any, Optional[str]], Any]

FILTERS: Dict[str, FilterFunc] = {}


def register_filter(name: str) -> Callable[[FilterFunc], FilterFunc]:
    """Register ``func`` as filter ``name``. Later registrations win."""

    def decorator(func: FilterFunc) -> FilterFunc:
        FILTERS[name] = func
        return func

    return decorator


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return datetime.fromisoformat(text)
    raise TypeError(f"cannot format {type(value).__name__} as a date")


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise TypeError("cannot format a boolean as currency")
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation as exc:
            raise ValueError(f"'{value}' is not a number") from exc
    raise TypeError(f"cannot format {type(value).__name__} as currency")


@register_filter("json")
def json_filter(value: Any, arg: Optional[str] = None) -> str:
    indent = int(arg) if arg else None
    return json.dumps(_jsonable(value), default=str, indent=indent)


@register_filter("date")
def date_filter(value: Any, arg: Optional[str] = None) -> str:
    return _to_datetime(value).strftime(arg or "%Y-%m-%d")


@register_filter("currency")
def currency_filter(value: Any, arg: Optional[str] = None) -> str:
    amount = _to_decimal(value).quantize(Decimal("0.01"))
    symbol = arg if arg is not None else "$"
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"


@register_filter("upper")
def upper_filter(value: Any, arg: Optional[str] = None) -> str:
    return "" if value is None else str(value).upper()


@register_filter("lower")
def lower_filter(value: Any, arg: Optional[str] = None) -> str:
    return "" if value is None else str(value).lower()


@register_filter("default")
def default_filter(value: Any, arg: Optional[str] = None) -> Any:
    if value is None or value == "":
        return arg or ""
    return value
