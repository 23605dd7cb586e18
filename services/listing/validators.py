"""
services/listing/validators.py
Batch validation of listing content. Every rule runs; callers get the full
list of messages so a provider can fix a form in one round-trip.
"""

import re
from numbers import Number
from typing import Any, Dict, List, Mapping

from shared.models.models import ListingKind
from shared.utils.exceptions import ValidationError

SERVICE_TYPES = (
    "Hair Cut",
    "Hair Style",
    "Face Makeup",
    "Nail Art",
    "Saree Draping",
    "Eye Makeup",
)
PACKAGE_TYPES = ("bridal", "party", "wedding", "festival", "custom")
CATEGORIES = ("Women", "Men", "Kids", "Unisex")
LOCATION_MODES = ("home_service", "salon_only", "both")
PRICE_TYPES = ("fixed", "hourly")
EXPERIENCE_LEVELS = ("beginner", "intermediate", "experienced", "expert")
WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

NAME_LENGTH = (2, 100)
DESCRIPTION_LENGTH = (5, 2000)
MAX_BASE_PRICE = 1_000_000
DURATION_RANGE = (15, 600)
LEAD_TIME_RANGE = (1, 365)

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

# Fields a provider may set or propose. Everything else on a listing is
# owned by the workflow.
CONTENT_FIELDS = frozenset({
    "name",
    "type",
    "category",
    "sub_type",
    "description",
    "detailed_description",
    "pricing",
    "duration",
    "experience_level",
    "location_mode",
    "availability",
    "cancellation_policy",
    "custom_notes",
    "preparation_required",
    "min_lead_time",
    "max_lead_time",
    "special_offers",
    "images",
})


def types_for(kind: ListingKind) -> tuple:
    return PACKAGE_TYPES if kind == ListingKind.PACKAGE else SERVICE_TYPES


def _is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def _is_int(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def _check_text(
    errors: List[str],
    fields: Mapping[str, Any],
    key: str,
    label: str,
    bounds: tuple,
    is_partial_update: bool,
) -> None:
    if is_partial_update and key not in fields:
        return
    value = fields.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        errors.append(f"{label} is required")
        return
    if not isinstance(value, str):
        errors.append(f"{label} must be text")
        return
    length = len(value.strip())
    low, high = bounds
    if length < low or length > high:
        errors.append(f"{label} must be between {low} and {high} characters")


def _check_choice(
    errors: List[str],
    fields: Mapping[str, Any],
    key: str,
    label: str,
    choices: tuple,
    is_partial_update: bool,
    required: bool = True,
) -> None:
    if is_partial_update and key not in fields:
        return
    value = fields.get(key)
    if value is None:
        if required:
            errors.append(f"{label} is required")
        return
    if value not in choices:
        errors.append(f"{label} must be one of: {', '.join(choices)}")


def _check_pricing(errors: List[str], pricing: Any) -> None:
    if not isinstance(pricing, Mapping):
        errors.append("Base price is required")
        return

    base_price = pricing.get("base_price")
    if base_price is None:
        errors.append("Base price is required")
    elif not _is_number(base_price):
        errors.append("Base price must be a number")
    elif base_price <= 0:
        errors.append("Base price must be greater than 0")
    elif base_price > MAX_BASE_PRICE:
        errors.append(f"Base price cannot exceed {MAX_BASE_PRICE:,}")

    price_type = pricing.get("price_type")
    if price_type is not None and price_type not in PRICE_TYPES:
        errors.append(f"Price type must be one of: {', '.join(PRICE_TYPES)}")

    for index, variation in enumerate(pricing.get("variations") or [], start=1):
        if not isinstance(variation, Mapping) or not str(variation.get("name") or "").strip():
            errors.append(f"Price variation {index} needs a name")
            continue
        extra = variation.get("additional_price", 0)
        if not _is_number(extra) or extra < 0:
            errors.append(f"Price variation {index} must have a non-negative additional price")

    for index, add_on in enumerate(pricing.get("add_ons") or [], start=1):
        if not isinstance(add_on, Mapping) or not str(add_on.get("name") or "").strip():
            errors.append(f"Add-on {index} needs a name")
            continue
        price = add_on.get("price")
        if not _is_number(price) or price < 0:
            errors.append(f"Add-on {index} must have a non-negative price")


def _check_duration(errors: List[str], duration: Any) -> None:
    low, high = DURATION_RANGE
    if duration is None:
        errors.append("Duration is required")
    elif not _is_int(duration):
        errors.append("Duration must be a whole number of minutes")
    elif duration < low or duration > high:
        errors.append(f"Duration must be between {low} and {high} minutes")


def check_lead_times(errors: List[str], fields: Mapping[str, Any]) -> None:
    low, high = LEAD_TIME_RANGE
    checked = {}
    for key, label in (("min_lead_time", "Minimum lead time"), ("max_lead_time", "Maximum lead time")):
        if fields.get(key) is None:
            continue
        value = fields[key]
        if not _is_int(value) or value < low or value > high:
            errors.append(f"{label} must be a whole number of days between {low} and {high}")
            continue
        checked[key] = value
    if len(checked) == 2 and checked["min_lead_time"] > checked["max_lead_time"]:
        errors.append("Minimum lead time cannot be greater than maximum lead time")


def _check_availability(errors: List[str], availability: Any) -> None:
    if not isinstance(availability, Mapping):
        errors.append("Availability must be an object with days and time slots")
        return
    days = availability.get("days") or []
    unknown = [d for d in days if d not in WEEKDAYS]
    if unknown:
        errors.append(f"Unknown availability days: {', '.join(map(str, unknown))}")
    for index, slot in enumerate(availability.get("time_slots") or [], start=1):
        start = slot.get("start") if isinstance(slot, Mapping) else None
        end = slot.get("end") if isinstance(slot, Mapping) else None
        if not (isinstance(start, str) and _HHMM.match(start) and isinstance(end, str) and _HHMM.match(end)):
            errors.append(f"Time slot {index} must use HH:MM start and end times")
        elif start >= end:
            errors.append(f"Time slot {index} must start before it ends")


def validate_listing_fields(
    fields: Mapping[str, Any],
    is_partial_update: bool = False,
    kind: ListingKind = ListingKind.SERVICE,
) -> List[str]:
    """
    Return every validation message for ``fields`` (empty list when valid).

    With ``is_partial_update`` only the keys present in ``fields`` are
    checked, but a key that is present with an empty value still fails its
    required rule.
    """
    errors: List[str] = []

    _check_text(errors, fields, "name", "Name", NAME_LENGTH, is_partial_update)
    _check_choice(errors, fields, "type", "Type", types_for(kind), is_partial_update)
    _check_choice(errors, fields, "category", "Category", CATEGORIES, is_partial_update)
    _check_text(errors, fields, "description", "Description", DESCRIPTION_LENGTH, is_partial_update)

    if not is_partial_update or "pricing" in fields:
        _check_pricing(errors, fields.get("pricing"))
    if not is_partial_update or "duration" in fields:
        _check_duration(errors, fields.get("duration"))

    _check_choice(
        errors, fields, "location_mode", "Location mode", LOCATION_MODES,
        is_partial_update, required=False,
    )
    _check_choice(
        errors, fields, "experience_level", "Experience level", EXPERIENCE_LEVELS,
        is_partial_update, required=False,
    )
    check_lead_times(errors, fields)

    if fields.get("availability") is not None:
        _check_availability(errors, fields["availability"])

    offers = fields.get("special_offers")
    if isinstance(offers, Mapping) and offers.get("discount_percentage") is not None:
        discount = offers["discount_percentage"]
        if not _is_number(discount) or discount < 0 or discount > 100:
            errors.append("Discount percentage must be between 0 and 100")

    return errors


def ensure_valid(
    fields: Mapping[str, Any],
    is_partial_update: bool = False,
    kind: ListingKind = ListingKind.SERVICE,
) -> Dict[str, Any]:
    errors = validate_listing_fields(fields, is_partial_update, kind)
    if errors:
        raise ValidationError(errors)
    return dict(fields)
