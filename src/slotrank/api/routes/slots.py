"""Slot windows per duration class."""

from __future__ import annotations

from fastapi import APIRouter

from slotrank.api.deps import app_state
from slotrank.models.duration import parse_duration
from slotrank.scoring import points_for_slot, points_table
from slotrank.slots import (
    DEFAULT_TIMEZONE,
    current_slot,
    is_valid_for_new_bet,
    next_slot,
    slots_for_period,
    valid_slots,
)

router = APIRouter()


def _tz() -> str:
    return app_state.config.slot_timezone if app_state.config else DEFAULT_TIMEZONE


def _slot_payload(slot) -> dict:
    return {**slot.to_dict(), "pointsIfCorrect": points_for_slot(slot.duration, slot.index)}


@router.get("/slots/points")
def slot_points() -> dict:
    return points_table()


@router.get("/slots/{duration}/active")
def active_slot(duration: str) -> dict:
    slot = current_slot(parse_duration(duration), _tz())
    return _slot_payload(slot)


@router.get("/slots/{duration}/next")
def upcoming_slot(duration: str) -> dict:
    slot = next_slot(parse_duration(duration), _tz())
    return _slot_payload(slot)


@router.get("/slots/{duration}/valid")
def open_slots(duration: str) -> dict:
    slots = valid_slots(parse_duration(duration), tz=_tz())
    return {"duration": duration, "slots": [_slot_payload(s) for s in slots]}


@router.get("/slots/{duration}")
def period_slots(duration: str) -> dict:
    d = parse_duration(duration)
    tz = _tz()
    current = current_slot(d, tz)
    return {
        "duration": d.value,
        "currentSlot": current.index,
        "slots": [
            {**_slot_payload(s), "isActive": s.index == current.index, "isOpen": s.index >= current.index}
            for s in slots_for_period(current.start, d, tz)
        ],
    }


@router.post("/slots/{duration}/{slot_number}/validate")
def validate_slot(duration: str, slot_number: int) -> dict:
    d = parse_duration(duration)
    valid = is_valid_for_new_bet(d, slot_number, tz=_tz())
    return {
        "duration": d.value,
        "slotNumber": slot_number,
        "isValid": valid,
        "message": "Slot is open for predictions" if valid else "Slot is closed or does not exist",
    }
