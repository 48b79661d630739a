import math
from typing import Any, Optional


def ok(data: Any = None, message: Optional[str] = None, **extra) -> dict:
    """Success envelope shared by every route."""
    body: dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    body.update(extra)
    return body


def pagination(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }


def blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def reject_null(value: Any) -> Any:
    """Update schemas accept omission but not an explicit null for required columns."""
    if value is None:
        raise ValueError("may not be null")
    return value
