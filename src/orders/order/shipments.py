"""Shipment / tracking mirror.

Orders carry shipment data in two shapes during the move to multi-shipment
orders: the legacy single ``shipment`` group and the ``shipments`` history
list. These helpers keep the two in sync and derive values from them. They
accept plain dicts or objects with the same attribute names, since both
shapes come from loosely typed stored documents.
"""

import hashlib
import re
from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from urllib.parse import quote

SHIPMENT_FIELDS = ("carrier", "tracking_number", "tracking_url", "shipped_at")

_TRACKING_NOISE = re.compile(r"[\s\u2010-\u2015\-]+")


class Carrier(Enum):
    USPS = "usps"
    UPS = "ups"
    FEDEX = "fedex"
    OTHER = "other"


class TrackingChange(Enum):
    ADDED = "added"
    UPDATED = "updated"
    REMOVED = "removed"


_TRACKING_URL_TEMPLATES = {
    Carrier.USPS.value: "https://tools.usps.com/go/TrackConfirmAction?tLabels={}",
    Carrier.UPS.value: "https://www.ups.com/track?loc=en_US&tracknum={}",
    Carrier.FEDEX.value: "https://www.fedex.com/fedextrack/?trknbr={}",
}

# Heuristic formats, checked against the normalized tracking number.
_TRACKING_PATTERNS = {
    Carrier.USPS.value: (
        re.compile(r"^(?:\d{20}|\d{22}|\d{26}|\d{30}|\d{34})$"),
        re.compile(r"^[A-Z]{2}\d{9}[A-Z]{2}$"),
    ),
    Carrier.UPS.value: (re.compile(r"^1Z[0-9A-Z]{16}$"),),
    Carrier.FEDEX.value: (
        re.compile(r"^(?:\d{12}|\d{15}|\d{20}|\d{22})$"),
        re.compile(r"^DT\d{12,14}$"),
    ),
    Carrier.OTHER.value: (re.compile(r"^.{6,}$"),),
}


def _read(entry, name: str):
    if entry is None:
        return None
    if isinstance(entry, Mapping):
        return entry.get(name)
    return getattr(entry, name, None)


def _as_dict(entry) -> dict:
    return {name: _read(entry, name) for name in SHIPMENT_FIELDS}


def _entries(shipments) -> list:
    if isinstance(shipments, list | tuple):
        return [entry for entry in shipments if entry is not None]
    return []


def has_shipment_data(entry) -> bool:
    return any(_read(entry, name) for name in SHIPMENT_FIELDS)


def parse_shipped_at(value) -> datetime | None:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def to_iso(moment: datetime) -> str:
    """Render a datetime as a UTC ISO string with millisecond precision."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _shipped_at_key(value: str):
    parsed = parse_shipped_at(value)
    # Parseable timestamps always outrank unparseable strings.
    return (parsed is not None, parsed or datetime.min.replace(tzinfo=UTC), value)


def pick_canonical_shipment(order) -> dict | None:
    """Pick the shipment that ``order.shipment`` should mirror.

    Prefers the entry with the most recent ``shipped_at`` across the legacy
    single value and the ``shipments`` list; the legacy value wins ties.
    Returns None when no entry has a ``shipped_at``.
    """
    if order is None:
        return None

    legacy = _read(order, "shipment")
    legacy_shipped_at = _read(legacy, "shipped_at")
    best = _as_dict(legacy) if isinstance(legacy_shipped_at, str) and legacy_shipped_at else None

    for entry in _entries(_read(order, "shipments")):
        shipped_at = _read(entry, "shipped_at")
        if not isinstance(shipped_at, str) or not shipped_at:
            continue
        if best is None or _shipped_at_key(shipped_at) > _shipped_at_key(best["shipped_at"]):
            best = _as_dict(entry)

    if best is None or not has_shipment_data(best):
        return None
    return best


def mirror_shipments_array_to_single(data: dict | None, original: dict | None = None) -> dict | None:
    """Copy the canonical shipment into ``shipment`` on the incoming change.

    ``data`` is the change being written and ``original`` the stored document;
    the canonical entry is chosen from their merged shape. Fields of ``shipment``
    other than the four shipment values (``last_notified_key``) are preserved.
    """
    if not data:
        return data

    merged = {**(original or {}), **data}
    chosen = pick_canonical_shipment(merged)
    if chosen is None:
        return data

    current = data.get("shipment") if isinstance(data.get("shipment"), Mapping) else {}
    return {**data, "shipment": {**current, **chosen}}


def mirror_single_shipment_to_array(data: dict | None, original: dict | None = None) -> dict | None:
    """Seed ``shipments`` with the single ``shipment`` while the list is empty."""
    incoming = data or {}
    previous = original or {}

    if _entries(incoming.get("shipments")) or _entries(previous.get("shipments")):
        return data

    group = incoming.get("shipment") or previous.get("shipment")
    if not has_shipment_data(group):
        return data

    return {**incoming, "shipments": [_as_dict(group)]}


def compute_latest_shipped_at(order) -> str | None:
    """Latest valid ``shipped_at`` across both shapes, as an ISO string."""
    candidates = [_read(_read(order, "shipment"), "shipped_at")]
    candidates.extend(_read(entry, "shipped_at") for entry in _entries(_read(order, "shipments")))

    parsed = [moment for moment in (parse_shipped_at(value) for value in candidates) if moment is not None]
    if not parsed:
        return None
    return to_iso(max(parsed))


def normalize_tracking_number(raw) -> str:
    """Trim, drop whitespace and dash-like characters, and uppercase."""
    if not isinstance(raw, str):
        return ""
    return _TRACKING_NOISE.sub("", raw.strip()).upper()


def is_valid_tracking_number(carrier: str, raw) -> bool:
    patterns = _TRACKING_PATTERNS.get(carrier, _TRACKING_PATTERNS[Carrier.OTHER.value])
    normalized = normalize_tracking_number(raw)
    return any(pattern.match(normalized) for pattern in patterns)


def build_tracking_url(carrier: str | None, tracking_number: str | None) -> str | None:
    if not tracking_number:
        return None
    template = _TRACKING_URL_TEMPLATES.get(carrier or "")
    if template is None:
        return None
    return template.format(quote(tracking_number, safe=""))


def classify_tracking_change(
    previous_number,
    next_number,
    previous_carrier: str | None,
    next_carrier: str | None,
) -> TrackingChange | None:
    """Classify a tracking edit for the buyer notification flow."""
    previous = normalize_tracking_number(previous_number)
    current = normalize_tracking_number(next_number)

    if not previous and current:
        return TrackingChange.ADDED
    if previous and not current:
        return TrackingChange.REMOVED
    if current and (previous != current or (previous_carrier or None) != (next_carrier or None)):
        return TrackingChange.UPDATED
    return None


def build_tracking_message_key(order_id: str, carrier: str | None, tracking_number: str) -> str:
    """Idempotency key for the outbound tracking email of one shipment."""
    text = f"{order_id}|{carrier or ''}|{tracking_number}"
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
