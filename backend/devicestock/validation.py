from __future__ import annotations
from datetime import datetime
from devicestock.time_utils import parse_iso_datetime, normalize_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime, JSON
from sqlalchemy.orm import DeclarativeMeta

from devicestock.errors import ValidationError
from devicestock.models.inventory import DEVICE_TYPES, PAYMENT_METHODS


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999


# Specification keys accepted per device type (boundary check only; the core
# stores specifications as an opaque string-keyed map)
COMMON_SPECIFICATION_KEYS = {"fault", "roughness", "accessories"}

SPECIFICATION_KEYS_BY_DEVICE_TYPE = {
    "PHONE": {"storage_capacity", "face_id", "touch_id", "idm", "ibm", "icm", "generation", "battery_health"},
    "LAPTOP": {"processor_type", "ram_size", "storage", "screen_size", "generation", "battery_life"},
    "SPEAKER": {"bluetooth_version", "battery_life"},
    "HEADPHONE": {"bluetooth_version", "battery_life", "noise_cancelling"},
    "TABLET": {"storage_capacity", "screen_size", "generation", "face_id", "touch_id"},
    "SMART_WATCH": {"screen_size", "generation", "battery_life", "band_size"},
    "GAME_CONSOLE": {"storage", "generation", "controllers"},
    "ROUTER": {"bands", "ports", "standard"},
}


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what callers are allowed to set (security boundary)
    - required_on_create: fields required on create
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


ITEM_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "serial_number", "device_type", "brand", "model_name", "name",
        "color", "condition", "specifications", "notes", "purchase_price_cents",
    },
    required_on_create={
        "serial_number", "device_type", "brand", "model_name", "name", "color", "condition",
    },
)

ITEM_DETAILS_POLICY = ModelValidationPolicy(
    writable_fields={"name", "brand", "model_name", "color", "condition", "specifications", "notes"},
)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        return coerce_datetime(value, col.key)

    if isinstance(coltype, JSON):
        if not isinstance(value, dict):
            raise ValidationError(f"{col.key} must be an object")
        return dict(value)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def coerce_int(value: Any, field: str) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15") and decimals (e.g., "12.5")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_datetime(value: Any, field: str) -> datetime:
    if isinstance(value, datetime):
        return normalize_datetime(value)
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        if dt is None:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        return dt
    raise ValidationError(f"{field} must be a datetime")


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes an incoming payload against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", fields=missing)

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", field=k)
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", field=k)

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", field=k)
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", field=k)

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", field=k)

        patch[k] = val

    return patch


def validate_price_cents(value: Any, field: str, *, allow_zero: bool = False) -> int:
    """Prices are integer cents, strictly positive unless allow_zero."""
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    cents = coerce_int(value, field)
    if cents < 0 or (cents == 0 and not allow_zero):
        qualifier = ">= 0" if allow_zero else "> 0"
        raise ValidationError(f"{field} must be {qualifier}", field=field)
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}", field=field)
    return cents


def validate_device_type(device_type: str) -> str:
    if device_type not in DEVICE_TYPES:
        raise ValidationError(
            f"Invalid device type '{device_type}'. Must be one of: {', '.join(DEVICE_TYPES)}",
            field="device_type",
        )
    return device_type


def validate_specifications(device_type: str, specifications: dict | None) -> dict:
    """Reject specification keys that make no sense for the device type."""
    if specifications is None:
        return {}
    if not isinstance(specifications, dict):
        raise ValidationError("specifications must be an object", field="specifications")
    allowed = COMMON_SPECIFICATION_KEYS | SPECIFICATION_KEYS_BY_DEVICE_TYPE.get(device_type, set())
    unknown = sorted(k for k in specifications if k not in allowed)
    if unknown:
        raise ValidationError(
            f"Specification keys not allowed for {device_type}: {', '.join(unknown)}",
            field="specifications",
            keys=unknown,
        )
    return dict(specifications)


def validate_party(details: Any, field: str, *, required: bool = True) -> dict | None:
    """Customer / collector contact block: {"name": str, "contact": str | None}."""
    if details is None:
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return None
    if not isinstance(details, dict):
        raise ValidationError(f"{field} must be an object", field=field)
    name = str(details.get("name") or "").strip()
    if not name:
        raise ValidationError(f"{field}.name is required", field=field)
    contact = details.get("contact")
    return {"name": name, "contact": str(contact).strip() if contact is not None else None}


def validate_payment_method(method: Any, *, required: bool = True) -> str | None:
    if method is None and not required:
        return None
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method '{method}'. Must be one of: {', '.join(PAYMENT_METHODS)}",
            field="payment_method",
        )
    return method
