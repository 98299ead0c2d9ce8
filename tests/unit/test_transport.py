"""Unit tests for transport module - stops, coordinates, routes and vehicles.

Tests cover:
- Exact and fuzzy stop matching
- Coordinate parsing and bounds
- Parsing stop lists returned by the records API
- Route (itinerary) and vehicle validation

Real-world significance:
- Parents type stop names by hand; "main gte" should still find "Main Gate"
- A route without any named stop cannot be assigned to a bus
"""

from __future__ import annotations

import pytest

from enrollment.data_models import Stop
from enrollment.transport import (
    LATITUDE_RANGE,
    LONGITUDE_RANGE,
    match_stop,
    parse_coordinate,
    parse_stops,
    validate_route,
    validate_vehicle,
)

STOPS = (
    Stop("Main Gate", 12.9716, 77.5946, 1),
    Stop("Lake View", 12.98, 77.6, 2),
)


@pytest.mark.unit
class TestMatchStop:
    """Unit tests for match_stop."""

    def test_exact_match_ignores_case_and_spacing(self) -> None:
        assert match_stop("  main   GATE ", STOPS) is STOPS[0]

    def test_fuzzy_match_above_threshold(self) -> None:
        assert match_stop("Main Gte", STOPS) is STOPS[0]

    def test_unrelated_name_is_new_stop(self) -> None:
        assert match_stop("Railway Station", STOPS) is None

    def test_blank_or_no_stops(self) -> None:
        assert match_stop("", STOPS) is None
        assert match_stop("Main Gate", ()) is None

    def test_threshold_100_requires_exact(self) -> None:
        assert match_stop("Main Gte", STOPS, threshold=100) is None


@pytest.mark.unit
class TestParseCoordinate:
    def test_valid(self) -> None:
        assert parse_coordinate("12.97", LATITUDE_RANGE) == pytest.approx(12.97)
        assert parse_coordinate(-180, LONGITUDE_RANGE) == -180.0

    def test_blank_is_none(self) -> None:
        assert parse_coordinate("  ", LATITUDE_RANGE) is None

    @pytest.mark.parametrize("value", ["north", "95", "-90.5"])
    def test_invalid_latitude(self, value: str) -> None:
        with pytest.raises(ValueError):
            parse_coordinate(value, LATITUDE_RANGE)


@pytest.mark.unit
class TestParseStops:
    def test_mixed_entries(self) -> None:
        stops = parse_stops(
            [
                {"stop_name": "Main Gate", "latitude": "12.97", "longitude": 77.59, "stop_order": 1},
                {"name": "Lake View", "latitude": "far away"},
                "Temple Road",
                {"stop_name": "  "},
                42,
            ]
        )

        assert [s.name for s in stops] == ["Main Gate", "Lake View", "Temple Road"]
        assert stops[0].latitude == pytest.approx(12.97)
        assert stops[0].order == 1
        assert stops[1].latitude is None

    def test_none(self) -> None:
        assert parse_stops(None) == ()


@pytest.mark.unit
class TestValidateRoute:
    """Unit tests for validate_route."""

    def test_valid_route_is_renumbered(self) -> None:
        """Verify blank stops are dropped and the rest renumbered.

        Real-world significance:
        - The route editor leaves an empty row behind when a stop is cleared
        """
        errors, route = validate_route(
            {
                "route_name": "North Loop",
                "start_point": "School",
                "end_point": "Hebbal",
                "stops": [
                    {"stop_name": "", "stop_order": 1},
                    {"stop_name": " Main Gate ", "stop_order": 2},
                    {"stop_name": "Lake View", "stop_order": 3},
                ],
            }
        )

        assert errors == {}
        assert [(s["stop_name"], s["stop_order"]) for s in route["stops"]] == [
            ("Main Gate", 1),
            ("Lake View", 2),
        ]

    def test_route_without_named_stops(self) -> None:
        errors, _ = validate_route(
            {
                "route_name": "North Loop",
                "start_point": "School",
                "end_point": "Hebbal",
                "stops": [{"stop_name": "  "}],
            }
        )
        assert errors == {"stops": "At least one valid stop is required"}

    def test_missing_required_fields(self) -> None:
        errors, _ = validate_route({})
        assert set(errors) == {"route_name", "start_point", "end_point", "stops"}

    def test_input_not_mutated(self) -> None:
        original = {"route_name": "R", "start_point": "A", "end_point": "B",
                    "stops": [{"stop_name": "Gate"}]}
        validate_route(original)
        assert "stop_order" not in original["stops"][0]


@pytest.mark.unit
class TestValidateVehicle:
    """Unit tests for validate_vehicle."""

    VALID = {
        "vehicle_number": "KA-01-AB-1234",
        "model": "Tata Starbus",
        "total_capacity": 40,
        "insurance_expiry": "2027-03-31",
        "status": "Active",
        "driver_id": "driver-1",
        "route_id": "route-1",
    }

    def test_valid(self) -> None:
        assert validate_vehicle(self.VALID) == {}

    @pytest.mark.parametrize("number", ["ka-01-ab-1234", "KA01AB1234", "KA-1-AB-1234"])
    def test_bad_vehicle_number(self, number: str) -> None:
        errors = validate_vehicle({**self.VALID, "vehicle_number": number})
        assert "vehicle_number" in errors

    @pytest.mark.parametrize("capacity", [0, "-3", "forty", None])
    def test_bad_capacity(self, capacity) -> None:
        errors = validate_vehicle({**self.VALID, "total_capacity": capacity})
        assert errors == {"total_capacity": "Capacity must be greater than 0"}

    def test_missing_assignments(self) -> None:
        errors = validate_vehicle({**self.VALID, "driver_id": "", "route_id": None})
        assert set(errors) == {"driver_id", "route_id"}
