"""Test helper utilities for the NiORM test suite."""

from tests.helpers.executors import Clock, RecordingExecutor
from tests.helpers.models import (
    FIXED_NOW,
    Article,
    Event,
    Membership,
    Person,
    PersonView,
    Session,
    Setting,
    Status,
    Token,
)

__all__ = [
    "FIXED_NOW",
    "Article",
    "Clock",
    "Event",
    "Membership",
    "Person",
    "PersonView",
    "RecordingExecutor",
    "Session",
    "Setting",
    "Status",
    "Token",
]
