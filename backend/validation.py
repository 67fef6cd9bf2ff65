# validation.py — Shared input normalisation for lifecycle operations
from typing import Any, Dict, List, Optional

from errors import ValidationError
from models import IssueCategory, IssuePriority

MAX_REASON_LENGTH = 200


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_payment_amount(value: Any) -> float:
    """None means "not provided" and becomes 0."""
    if value is None:
        return 0.0
    if not _is_number(value):
        raise ValidationError("Payment amount must be a number", field="payment_amount")
    if value < 0:
        raise ValidationError("Payment amount cannot be negative", field="payment_amount")
    return float(value)


def validate_estimated_hours(value: Any) -> Optional[float]:
    if value is None:
        return None
    if not _is_number(value) or value < 0:
        raise ValidationError("Estimated hours must be a non-negative number", field="estimated_hours")
    return float(value)


def validate_time_spent(value: Any, required: bool = False) -> Optional[int]:
    """Minutes of work: a non-negative integer. 30.0 is accepted as 30."""
    if value is None:
        if required:
            raise ValidationError("Valid time spent is required", field="time_spent")
        return None
    if not _is_number(value):
        raise ValidationError("Time spent must be an integer number of minutes", field="time_spent")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError("Time spent must be an integer number of minutes", field="time_spent")
        value = int(value)
    if value < 0:
        raise ValidationError("Time spent cannot be negative", field="time_spent")
    return value


def validate_rating(value: Any) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or not 1 <= value <= 5:
        raise ValidationError("Rating must be an integer between 1 and 5", field="rating")
    return value


def validate_reason(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Rejection reason is required", field="reason")
    reason = value.strip()
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(
            f"Rejection reason cannot exceed {MAX_REASON_LENGTH} characters", field="reason"
        )
    return reason


def normalize_materials(value: Any) -> List[Dict[str, Any]]:
    """Coerce the materials payload into a list of material dicts.

    A bare non-blank string is one item (quantity 1, unit "piece", cost 0).
    A list is taken as-is: dict entries keep their fields with defaults
    filled in, string entries become single items. Anything else is empty.
    """
    if isinstance(value, str):
        name = value.strip()
        if not name:
            return []
        return [{"name": name, "quantity": 1, "unit": "piece", "cost": 0}]
    if isinstance(value, (list, tuple)):
        items = []
        for entry in value:
            if isinstance(entry, dict):
                items.append({
                    "name": str(entry.get("name", "")),
                    "quantity": entry.get("quantity", 1),
                    "unit": entry.get("unit", "piece"),
                    "cost": entry.get("cost", 0),
                })
            elif isinstance(entry, str) and entry.strip():
                items.append({"name": entry.strip(), "quantity": 1, "unit": "piece", "cost": 0})
        return items
    return []


# Issue columns holding the structured address
LOCATION_FIELDS = (
    "block_number", "apartment_number", "floor_number", "area", "latitude", "longitude",
)
_TEXT_LIMITS = {
    "title": 100,
    "description": 1000,
    "block_number": 10,
    "apartment_number": 20,
    "floor_number": 5,
    "area": 100,
}
_COORDINATE_LIMITS = {"latitude": 90, "longitude": 180}
EDITABLE_ISSUE_FIELDS = ("title", "description", "category", "priority", "cost", "estimated_hours") + LOCATION_FIELDS
EDITABLE_ASSIGNMENT_FIELDS = ("assignment_notes", "estimated_hours", "payment_amount")


def _reject_unknown(changes: Dict[str, Any], allowed) -> None:
    if not changes:
        raise ValidationError("No fields to update")
    for name in changes:
        if name not in allowed:
            raise ValidationError(f"Field cannot be edited: {name}", field=name)


def _text(name: str, value: Any, limit: int) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be text", field=name)
    value = value.strip()
    if len(value) > limit:
        raise ValidationError(f"{name} cannot exceed {limit} characters", field=name)
    return value or None


def validate_issue_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Normalise an issue edit. Only descriptive fields may change."""
    _reject_unknown(changes, EDITABLE_ISSUE_FIELDS)
    values: Dict[str, Any] = {}
    for name, value in changes.items():
        if name in _TEXT_LIMITS:
            values[name] = _text(name, value, _TEXT_LIMITS[name])
        elif name in _COORDINATE_LIMITS:
            limit = _COORDINATE_LIMITS[name]
            if value is not None and (not _is_number(value) or not -limit <= value <= limit):
                raise ValidationError(f"{name} must be between -{limit} and {limit}", field=name)
            values[name] = float(value) if value is not None else None
        elif name == "category":
            values[name] = _enum_member(IssueCategory, name, value)
        elif name == "priority":
            values[name] = _enum_member(IssuePriority, name, value)
        elif name == "cost":
            if value is not None and (not _is_number(value) or value < 0):
                raise ValidationError("Cost must be a non-negative number", field="cost")
            values[name] = value
        elif name == "estimated_hours":
            values[name] = validate_estimated_hours(value)

    if "title" in values and not values["title"]:
        raise ValidationError("Title is required", field="title")
    if "description" in values:
        values["description"] = values["description"] or ""
    return values


def validate_assignment_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    _reject_unknown(changes, EDITABLE_ASSIGNMENT_FIELDS)
    values: Dict[str, Any] = {}
    if "assignment_notes" in changes:
        values["assignment_notes"] = _text("assignment_notes", changes["assignment_notes"], 500)
    if "estimated_hours" in changes:
        values["estimated_hours"] = validate_estimated_hours(changes["estimated_hours"])
    if "payment_amount" in changes:
        values["payment_amount"] = validate_payment_amount(changes["payment_amount"])
    return values


def _enum_member(enum_cls, name: str, value: Any):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Unknown {name}: {value}", field=name)
