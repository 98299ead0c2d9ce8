"""Shared pytest fixtures for unit and integration tests.

This module provides:
- A fixed "today" so age and identifier checks never depend on the wall clock
- Reference snapshots (existing identifiers, vehicles, route stops)
- A complete, valid set of student field values
- A fake records API served through ``httpx.MockTransport``
"""

from __future__ import annotations

from datetime import date
from typing import Any, Callable, Dict, List, Tuple, Union

import httpx
import pytest

from enrollment.api_client import RecordsClient
from enrollment.config_loader import default_config
from enrollment.data_models import ReferenceSnapshot, Stop, Vehicle

TODAY = date(2026, 10, 18)

Handler = Callable[[httpx.Request], httpx.Response]
Reply = Union[Tuple[int, Any], Handler]


class FakeRecordsApi:
    """In-memory stand-in for the records API.

    Replies are registered per (method, path) where path excludes the
    '/api' root, e.g. ``api.reply("GET", "/students", 200, [...])``.
    Unregistered routes answer 404. Every request is recorded.
    """

    base_url = "http://records.test/api"

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self._replies: Dict[Tuple[str, str], Reply] = {}

    def reply(self, method: str, path: str, status: int = 200, body: Any = None) -> None:
        self._replies[(method, path)] = (status, body)

    def route(self, method: str, path: str, handler: Handler) -> None:
        self._replies[(method, path)] = handler

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.startswith("/api"):
            path = path[len("/api"):]

        reply = self._replies.get((request.method, path))
        if reply is None:
            return httpx.Response(404, json={"message": "Route not found"})
        if callable(reply):
            return reply(request)

        status, body = reply
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    def client(self) -> RecordsClient:
        return RecordsClient(self.base_url, transport=httpx.MockTransport(self.handle))

    def calls(self, method: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method]


@pytest.fixture
def today() -> date:
    """Fixed reference date used by every clock-dependent rule.

    Real-world significance:
    - Student age limits are checked against "today"
    - The identifier year partition is the current year
    """
    return TODAY


@pytest.fixture
def clock(today: date) -> Callable[[], date]:
    return lambda: today


@pytest.fixture
def config() -> Dict[str, Any]:
    """Built-in configuration (same values as config/parameters.yaml)."""
    return default_config()


@pytest.fixture
def references() -> ReferenceSnapshot:
    """Reference lists for a school with two buses.

    Real-world significance:
    - bus-1 runs route-1, which has two known stops
    - bus-2 runs route-2, which has no stops yet (new stops must be authored)
    - Two identifiers already exist for the '4821' suffix this year
    """
    return ReferenceSnapshot(
        existing_identifiers=("2026-4821-0001", "2026-4821-0003", "2025-9012-0005"),
        vehicles=(
            Vehicle(id="bus-1", label="KA-01-AB-1234", route_ref="route-1"),
            Vehicle(id="bus-2", label="KA-01-AB-5678", route_ref="route-2"),
        ),
        stops={
            "route-1": (
                Stop(name="Main Gate", latitude=12.9716, longitude=77.5946, order=1),
                Stop(name="Lake View", latitude=12.98, longitude=77.6, order=2),
            ),
            "route-2": (),
        },
    )


@pytest.fixture
def student_values() -> Dict[str, str]:
    """Field values for a student who passes every step.

    Real-world significance:
    - Asha Rao, born 2 April 2016, is 10 on the fixed test date
    - The primary contact starts with 7, a valid Indian mobile prefix
    """
    return {
        "document_number": "1234-5678-9012",
        "first_name": "Asha",
        "last_name": "Rao",
        "email": "asha.parent@example.org",
        "dob": "2016-04-02",
        "gender": "Female",
        "address.address_line": "12 MG Road",
        "address.city": "Bengaluru",
        "address.state": "Karnataka",
        "address.pincode": "560001",
        "class_info.grade": "5",
        "class_info.section": "A",
        "parent_details.father_name": "Ravi Rao",
        "parent_details.mother_name": "Meena Rao",
        "parent_details.primary_contact": "7890123456",
    }


@pytest.fixture
def employee_values() -> Dict[str, str]:
    """Field values for a teacher who passes every rule."""
    return {
        "document_number": "9876 5432 1098",
        "full_name": "Kavya Iyer",
        "email": "kavya.iyer@example.org",
        "phone": "9123456780",
        "dob": "1990-06-15",
        "designation": "Mathematics Teacher",
        "qualification": "MSc, BEd",
    }


@pytest.fixture
def records_api() -> FakeRecordsApi:
    return FakeRecordsApi()
