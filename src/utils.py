from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")


def money(value):
    """Coerce a number (or numeric string) to a Decimal rounded to the minor unit."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_money(value):
    """Like money(), but returns None for anything that is not a finite number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = money(value)
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not amount.is_finite():
        return None
    return amount


def to_float(value):
    return float(value) if value is not None else 0.0


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(dt):
    # SQLite hands back naive datetimes for timezone-aware columns
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def isoformat(dt):
    dt = as_utc(dt)
    return dt.isoformat() if dt else None


def time_ago(dt, now=None):
    seconds = int(((now or utcnow()) - as_utc(dt)).total_seconds())
    if seconds < 60:
        return f"{seconds} seconds ago"
    if seconds < 3600:
        return f"{seconds // 60} minutes ago"
    if seconds < 86400:
        return f"{seconds // 3600} hours ago"
    return f"{seconds // 86400} days ago"


def page_args(args, default_limit=20, max_limit=100):
    page = max(args.get("page", 1, type=int) or 1, 1)
    limit = args.get("limit", default_limit, type=int) or default_limit
    return page, min(max(limit, 1), max_limit)


def pagination_dict(pagination, page, limit):
    return {
        "total": pagination.total,
        "page": page,
        "limit": limit,
        "pages": pagination.pages,
    }
