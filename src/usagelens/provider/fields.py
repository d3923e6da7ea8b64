"""
Tolerant readers for provider usage payloads.

Providers name the same quantity differently across endpoints and
API versions. Each quantity has an ordered tuple of candidate field
names; the first field that is present (not None) wins and anything
missing or unparseable reads as zero.
"""

import math
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping

INPUT_TOKEN_FIELDS: "tuple[str, ...]" = (
    "input_tokens",
    "prompt_tokens",
    "promptTokenCount",
    "num_tokens",
    "input_characters",
)
OUTPUT_TOKEN_FIELDS: "tuple[str, ...]" = (
    "output_tokens",
    "completion_tokens",
    "candidatesTokenCount",
    "generated_tokens",
    "output_characters",
)
REQUEST_COUNT_FIELDS: "tuple[str, ...]" = (
    "num_model_requests",
    "num_requests",
    "request_count",
    "requests",
    "message_requests",
    "num_images",
    "num_sessions",
)
COST_FIELDS: "tuple[str, ...]" = (
    "amount",
    "cost_usd",
    "total_cost",
    "cost",
    "amount_usd",
)
DATE_FIELDS: "tuple[str, ...]" = (
    "date",
    "start_date",
    "starting_at",
    "start_time",
)
# keys under which list payloads put their buckets
DATA_FIELDS: "tuple[str, ...]" = ("data", "usage", "costs", "workspaces", "models")


def first_present(record: "Mapping[str, Any]", names: "Iterable[str]") -> "Any":
    """
    returns the value of the first field in names that is present
    and not None, or None.
    """
    for name in names:
        value = record.get(name)
        if value is not None:
            return value
    return None


def to_int(value: "Any") -> "int":
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return value
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return int(number)


def to_amount(value: "Any") -> "float":
    """
    parses a monetary amount. Amounts may arrive as numbers, as
    decimal strings with long fractional parts or wrapped in a
    {"value": ...} object. Unparseable, non-finite and negative
    values read as 0.
    """
    if isinstance(value, Mapping):
        value = value.get("value")
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        amount = float(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError):
        return 0.0
    if not math.isfinite(amount) or amount < 0:
        return 0.0
    return amount


def probe_int(record: "Mapping[str, Any]", names: "Iterable[str]") -> "int":
    return to_int(first_present(record, names))


def probe_amount(record: "Mapping[str, Any]", names: "Iterable[str]") -> "float":
    return to_amount(first_present(record, names))


def to_date(value: "Any") -> "date | None":
    """
    turns a bucket timestamp into a UTC calendar day. Accepts unix
    seconds, ISO dates and ISO datetimes.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value <= 0:
            return None
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc).date()
        except (ValueError, OverflowError, OSError):
            # e.g. millisecond timestamps
            return None

    text = str(value).strip()
    if not text:
        return None
    try:
        if len(text) == 10:
            return date.fromisoformat(text)
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None
    return parsed.date()


def bucket_date(bucket: "Mapping[str, Any]") -> "date | None":
    return to_date(first_present(bucket, DATE_FIELDS))


def bucket_rows(bucket: "Mapping[str, Any]") -> "list[Mapping[str, Any]]":
    """
    returns the per-group rows of a bucket. Report-style APIs nest
    rows under "results"; flat APIs put the figures on the bucket.
    """
    results = bucket.get("results")
    if isinstance(results, list):
        return [row for row in results if isinstance(row, Mapping)]
    return [bucket]


def payload_items(payload: "Mapping[str, Any]") -> "list[Mapping[str, Any]] | None":
    """
    returns the list of items of a list payload, or None when the
    payload has no recognisable list.
    """
    for name in DATA_FIELDS:
        items = payload.get(name)
        if isinstance(items, list):
            return [item for item in items if isinstance(item, Mapping)]
    return None
