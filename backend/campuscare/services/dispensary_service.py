# Overview: Dispensary administration: slot layout, metadata and telemetry.

from __future__ import annotations

from ..extensions import db
from ..errors import DispensaryNotFound, ValidationError
from ..models import Dispensary, DispensarySlot
from ..models.dispensary import DISPENSARY_STATUSES, NETWORK_STATUSES, POWER_STATUSES, SLOT_COLUMNS
from campuscare.time_utils import parse_iso_datetime
from . import notification_service
from .auth_service import Principal, require_operator
from .concurrency import begin_write, run_with_retry


MAX_CAPACITY = 26 * SLOT_COLUMNS


def slot_labels(capacity: int) -> list[str]:
    """A1..A10, B1..B10, ... for the first `capacity` slots."""
    labels = []
    for i in range(capacity):
        row = chr(ord("A") + i // SLOT_COLUMNS)
        col = i % SLOT_COLUMNS + 1
        labels.append(f"{row}{col}")
    return labels


def get_dispensary(dispensary_id: int) -> Dispensary:
    dispensary = db.session.get(Dispensary, dispensary_id)
    if dispensary is None:
        raise DispensaryNotFound(f"Dispensary {dispensary_id} not found")
    return dispensary


def list_dispensaries() -> list[Dispensary]:
    return (
        db.session.query(Dispensary)
        .filter_by(is_active=True)
        .order_by(Dispensary.name)
        .all()
    )


def _require_text(data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} is required")
    return value.strip()


def _optional_float(value, key: str):
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{key} must be a number")
    return float(value)


def create_dispensary(data: dict, requester: Principal) -> Dispensary:
    """
    Create a unit and lay out its slots.

    data: name, location {building, floor, room?, coordinates {latitude, longitude}?}, capacity
    """
    require_operator(requester)

    name = _require_text(data, "name")
    location = data.get("location") or {}
    if not isinstance(location, dict):
        raise ValidationError("location must be an object")
    building = _require_text(location, "building")
    floor = location.get("floor")
    if not isinstance(floor, int) or isinstance(floor, bool) or floor < 0:
        raise ValidationError("Floor must be a valid number")
    capacity = data.get("capacity")
    if not isinstance(capacity, int) or isinstance(capacity, bool) or capacity < 1:
        raise ValidationError("Capacity must be at least 1")
    if capacity > MAX_CAPACITY:
        raise ValidationError(f"Capacity cannot exceed {MAX_CAPACITY}")
    coordinates = location.get("coordinates") or {}

    def _op():
        begin_write()
        dispensary = Dispensary(
            name=name,
            building=building,
            floor=floor,
            room=location.get("room"),
            latitude=_optional_float(coordinates.get("latitude"), "latitude"),
            longitude=_optional_float(coordinates.get("longitude"), "longitude"),
            capacity=capacity,
            status="active",
        )
        dispensary.slots = [
            DispensarySlot(label=label, position=position, is_occupied=False, quantity=0)
            for position, label in enumerate(slot_labels(capacity), start=1)
        ]
        db.session.add(dispensary)
        db.session.commit()
        return dispensary

    return run_with_retry(_op)


def update_dispensary(dispensary_id: int, data: dict, requester: Principal) -> Dispensary:
    """Edit descriptive fields. Capacity and slot labels are fixed at creation."""
    require_operator(requester)
    if "capacity" in data or "slots" in data:
        raise ValidationError("capacity and slots cannot be changed after creation")

    def _op():
        begin_write()
        dispensary = get_dispensary(dispensary_id)

        if "name" in data:
            dispensary.name = _require_text(data, "name")
        location = data.get("location")
        if location is not None:
            if not isinstance(location, dict):
                raise ValidationError("location must be an object")
            if "building" in location:
                dispensary.building = _require_text(location, "building")
            if "floor" in location:
                floor = location["floor"]
                if not isinstance(floor, int) or isinstance(floor, bool) or floor < 0:
                    raise ValidationError("Floor must be a valid number")
                dispensary.floor = floor
            if "room" in location:
                dispensary.room = location["room"]
            coordinates = location.get("coordinates")
            if coordinates:
                dispensary.latitude = _optional_float(coordinates.get("latitude"), "latitude")
                dispensary.longitude = _optional_float(coordinates.get("longitude"), "longitude")
        for key, attr in (("last_maintenance", "last_maintenance_at"), ("next_maintenance", "next_maintenance_at")):
            if key in data:
                try:
                    setattr(dispensary, attr, parse_iso_datetime(data[key]))
                except (TypeError, ValueError, AttributeError):
                    raise ValidationError(f"{key} must be an ISO-8601 datetime")
        if "is_active" in data:
            dispensary.is_active = bool(data["is_active"])

        db.session.commit()
        return dispensary

    return run_with_retry(_op)


def update_status(dispensary_id: int, data: dict, requester: Principal) -> Dispensary:
    """
    Record operational status and telemetry reported by the cabinet.

    Only keys present in data are changed. Emits dispensaryStatusChanged.
    """
    require_operator(requester)

    status = data.get("status")
    if status is not None and status not in DISPENSARY_STATUSES:
        raise ValidationError("Invalid status")
    power_status = data.get("power_status")
    if power_status is not None and power_status not in POWER_STATUSES:
        raise ValidationError("Invalid power_status")
    network_status = data.get("network_status")
    if network_status is not None and network_status not in NETWORK_STATUSES:
        raise ValidationError("Invalid network_status")
    temperature = _optional_float(data.get("temperature"), "temperature")
    humidity = _optional_float(data.get("humidity"), "humidity")

    def _op():
        begin_write()
        dispensary = get_dispensary(dispensary_id)
        if status is not None:
            dispensary.status = status
        if temperature is not None:
            dispensary.temperature = temperature
        if humidity is not None:
            dispensary.humidity = humidity
        if power_status is not None:
            dispensary.power_status = power_status
        if network_status is not None:
            dispensary.network_status = network_status
        db.session.commit()
        return dispensary

    dispensary = run_with_retry(_op)
    notification_service.publish(
        notification_service.EVENT_DISPENSARY_STATUS_CHANGED,
        {
            "dispensaryId": dispensary.id,
            "status": dispensary.status,
            "temperature": dispensary.temperature,
            "humidity": dispensary.humidity,
            "powerStatus": dispensary.power_status,
            "networkStatus": dispensary.network_status,
        },
    )
    return dispensary
