"""Test helper utilities for registration notifier tests."""

from .fakes import FakeEmailSender, FakeSmsSender
from .seed import (
    make_registration,
    seed_assignment,
    seed_booking,
    seed_insurance,
    seed_plate,
    seed_queue_item,
    seed_registration,
    seed_vehicle,
)

__all__ = [
    "FakeSmsSender",
    "FakeEmailSender",
    "make_registration",
    "seed_registration",
    "seed_queue_item",
    "seed_plate",
    "seed_assignment",
    "seed_booking",
    "seed_insurance",
    "seed_vehicle",
]
