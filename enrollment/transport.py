"""Transport helpers: stop matching, coordinates, route and vehicle checks.

Routes (itineraries) and vehicles are validated as plain records here, the
way the records API stores them. Student and employee transport selections
are validated by the rule tables in ``rules.py``, which use the coordinate
parser below.

**Stop matching:**
- A typed stop name is compared with the stops of the selected vehicle's
  route: first exactly (case and spacing insensitive), then fuzzily with
  RapidFuzz ``fuzz.ratio`` at the configured threshold.
- A stop that matches nothing is a new stop authored by the user.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from rapidfuzz import fuzz, process

from .data_models import Stop
from .utils import string_or_empty

LOG = logging.getLogger(__name__)

DEFAULT_MATCH_THRESHOLD = 85

LATITUDE_RANGE = (-90.0, 90.0)
LONGITUDE_RANGE = (-180.0, 180.0)

VEHICLE_NUMBER_PATTERN = re.compile(r"^[A-Z]{2}-[0-9]{2}-[A-Z]{2}-[0-9]{4}$")


def normalize_stop_name(name: str) -> str:
    """Normalize formatting prior to matching."""
    return re.sub(r"\s+", " ", string_or_empty(name).lower())


def parse_coordinate(value: Any, bounds: Tuple[float, float]) -> Optional[float]:
    """Parse a typed coordinate.

    Parameters
    ----------
    value : Any
        Typed text or number. Blank means "not provided".
    bounds : Tuple[float, float]
        Inclusive (low, high) range.

    Returns
    -------
    Optional[float]
        Parsed coordinate, or None when blank.

    Raises
    ------
    ValueError
        If the value is not a number or lies outside ``bounds``.
    """
    text = string_or_empty(value)
    if not text:
        return None
    number = float(text)
    low, high = bounds
    if not low <= number <= high:
        raise ValueError(f"{number} is outside {low}..{high}")
    return number


def match_stop(
    name: str,
    stops: Sequence[Stop],
    threshold: float = DEFAULT_MATCH_THRESHOLD,
) -> Optional[Stop]:
    """Find the known stop a typed name refers to.

    Parameters
    ----------
    name : str
        Stop name as typed.
    stops : Sequence[Stop]
        Stops of the selected route.
    threshold : float
        Minimum RapidFuzz ratio (0-100) for a fuzzy match.

    Returns
    -------
    Optional[Stop]
        Matching stop, or None when the name is blank or matches nothing.
    """
    query = normalize_stop_name(name)
    if not query or not stops:
        return None

    choices = [normalize_stop_name(stop.name) for stop in stops]
    for stop, choice in zip(stops, choices):
        if choice == query:
            return stop

    best = process.extractOne(query=query, choices=choices, scorer=fuzz.ratio)
    if best is None:
        return None

    _, score, index = best
    if score >= threshold:
        LOG.info(
            "Matched stop '%s' to '%s' with score %.0f", name, stops[index].name, score
        )
        return stops[index]
    return None


def parse_stops(raw_stops: Any) -> Tuple[Stop, ...]:
    """Convert stop entries returned by the records API into Stop values.

    Entries without a name are skipped; unparseable coordinates become None.
    """
    stops: List[Stop] = []
    for entry in raw_stops or []:
        if isinstance(entry, str):
            entry = {"stop_name": entry}
        if not isinstance(entry, Mapping):
            continue
        name = string_or_empty(entry.get("stop_name") or entry.get("name"))
        if not name:
            continue
        stops.append(
            Stop(
                name=name,
                latitude=_coordinate_or_none(entry.get("latitude"), LATITUDE_RANGE),
                longitude=_coordinate_or_none(entry.get("longitude"), LONGITUDE_RANGE),
                order=entry.get("stop_order"),
            )
        )
    return tuple(stops)


def _coordinate_or_none(value: Any, bounds: Tuple[float, float]) -> Optional[float]:
    try:
        return parse_coordinate(value, bounds)
    except (TypeError, ValueError):
        return None


def validate_route(route: Mapping[str, Any]) -> Tuple[Dict[str, str], Dict[str, Any]]:
    """Validate an itinerary and normalize its stops.

    Route name, start point and end point are required, and at least one
    stop must have a non-blank name. Blank stops are dropped and the
    remaining stops renumbered 1..n in their given order.

    Parameters
    ----------
    route : Mapping[str, Any]
        Route record with 'route_name', 'start_point', 'end_point' and a
        'stops' list of dicts ('stop_name', 'latitude', 'longitude', ...).

    Returns
    -------
    Tuple[Dict[str, str], Dict[str, Any]]
        (errors, normalized route). The normalized route is only meaningful
        when errors is empty.
    """
    errors: Dict[str, str] = {}

    for key, label in (
        ("route_name", "Route name"),
        ("start_point", "Starting point"),
        ("end_point", "Ending point"),
    ):
        if not string_or_empty(route.get(key)):
            errors[key] = f"{label} is required"

    valid_stops = [
        dict(stop)
        for stop in route.get("stops") or []
        if isinstance(stop, Mapping) and string_or_empty(stop.get("stop_name"))
    ]
    if not valid_stops:
        errors["stops"] = "At least one valid stop is required"

    for index, stop in enumerate(valid_stops, start=1):
        stop["stop_name"] = string_or_empty(stop["stop_name"])
        stop["stop_order"] = index

    normalized = dict(route)
    normalized["stops"] = valid_stops
    return errors, normalized


def validate_vehicle(vehicle: Mapping[str, Any]) -> Dict[str, str]:
    """Validate a vehicle (bus) record.

    Returns
    -------
    Dict[str, str]
        Error map keyed by field name; empty when the vehicle is valid.
    """
    errors: Dict[str, str] = {}

    number = string_or_empty(vehicle.get("vehicle_number"))
    if not number:
        errors["vehicle_number"] = "Vehicle number is required"
    elif not VEHICLE_NUMBER_PATTERN.match(number):
        errors["vehicle_number"] = "Invalid vehicle number format (e.g. KA-01-AB-1234)"

    if not string_or_empty(vehicle.get("model")):
        errors["model"] = "Bus model is required"

    capacity = vehicle.get("total_capacity")
    try:
        capacity_value = int(string_or_empty(capacity))
    except ValueError:
        capacity_value = 0
    if capacity_value <= 0:
        errors["total_capacity"] = "Capacity must be greater than 0"

    if not string_or_empty(vehicle.get("insurance_expiry")):
        errors["insurance_expiry"] = "Insurance expiry date is required"
    if not string_or_empty(vehicle.get("status")):
        errors["status"] = "Status is required"
    if not string_or_empty(vehicle.get("driver_id")):
        errors["driver_id"] = "Driver assignment is required"
    if not string_or_empty(vehicle.get("route_id")):
        errors["route_id"] = "Route assignment is required"

    return errors
