# Overview: Paging, sorting and query-string parsing shared by list endpoints.

from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation
from typing import Any, Sequence

from ..validation import ValidationError
from crm.time_utils import parse_iso_datetime

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def parse_paging(args) -> tuple[int, int]:
    try:
        page = int(args.get("page", 1))
        limit = int(args.get("limit", DEFAULT_PAGE_SIZE))
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers")
    if page < 1:
        raise ValidationError("page must be >= 1")
    if limit < 1:
        raise ValidationError("limit must be >= 1")
    return page, min(limit, MAX_PAGE_SIZE)


def parse_sort(args, allowed: dict[str, Any], default: str) -> tuple[Any, bool]:
    """
    Accept either sort_by=field:order or sort_by=field&sort_order=order.

    Returns (column, descending). Unknown fields are rejected.
    """
    raw = (args.get("sort_by") or "").strip()
    order = (args.get("sort_order") or "").strip().lower()
    if ":" in raw:
        raw, order = raw.split(":", 1)
        order = order.lower()
    field = raw or default
    if field not in allowed:
        raise ValidationError(f"Cannot sort by '{field}'. Allowed: {', '.join(sorted(allowed))}")
    descending = order != "asc" if order else field == default
    return allowed[field], descending


def parse_bool_arg(value: str | None) -> bool | None:
    if value is None or value == "":
        return None
    return value.strip().lower() in {"1", "true", "yes"}


def parse_date_arg(value: str | None, field: str):
    if not value:
        return None
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date")


def parse_decimal_arg(value: str | None, field: str) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(value)
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")


def parse_int_arg(value: str | None, field: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"{field} must be an integer")


def page_meta(total: int, page: int, limit: int) -> dict:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if limit else 0,
    }


def paginate_query(query, page: int, limit: int) -> tuple[list, dict]:
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, page_meta(total, page, limit)


def paginate_list(items: Sequence, page: int, limit: int) -> tuple[list, dict]:
    start = (page - 1) * limit
    return list(items[start:start + limit]), page_meta(len(items), page, limit)
