"""REST client for the school records API.

The enrollment core only depends on four capability groups, all provided by
``RecordsClient``:

- Existing identifiers of a record kind (collision avoidance)
- Vehicle catalog and route stops (transport choices)
- Image upload (photo field)
- Record creation and update (terminal submit action)

**Error Handling:**
- Every failure is raised as ``ApiError`` carrying a user-facing message and
  the HTTP status code when there is one
- HTTP 409 is raised as ``ConflictError``: the server rejected a duplicate
  identifier, and the user may edit and resubmit
- Network errors and timeouts are ``ApiError`` without a status code
- Reference fetches are wrapped by ``fetch_reference_snapshot``, which turns
  failures into warnings and empty lists
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .data_models import ReferenceSnapshot, Stop, Vehicle
from .enums import RecordKind
from .transport import parse_stops
from .utils import ref_id, string_or_empty

LOG = logging.getLogger(__name__)

STATUS_MESSAGES = {
    401: "Your session has expired. Please sign in again.",
    403: "You do not have permission to perform this action.",
    404: "Resource not found.",
    500: "Server error. Please try again later.",
}
DEFAULT_ERROR_MESSAGE = "An error occurred"
NETWORK_ERROR_MESSAGE = "Network error. Please check your connection."
TIMEOUT_MESSAGE = "The server took too long to respond. Please try again."

PHOTO_UPLOAD_PATH = "/students/photo"


class ApiError(Exception):
    """A records API call failed.

    Attributes
    ----------
    message : str
        User-facing message (server-provided when available).
    status_code : Optional[int]
        HTTP status, or None for network errors.
    retryable : bool
        True when the user can fix the input and resubmit.
    """

    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ConflictError(ApiError):
    """The server rejected a duplicate value (typically the identifier)."""

    retryable = True


def _error_from_response(response: httpx.Response) -> ApiError:
    message = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")

    status = response.status_code
    if not message:
        message = STATUS_MESSAGES.get(status, DEFAULT_ERROR_MESSAGE)

    if status == 409:
        return ConflictError(message, status)
    return ApiError(message, status)


class RecordsClient:
    """Synchronous client for the records API.

    Parameters
    ----------
    base_url : str
        API root, e.g. 'https://school.example.org/api'.
    timeout : float
        Per-request timeout in seconds.
    token : str, optional
        Bearer token sent with every request.
    transport : httpx.BaseTransport, optional
        Custom transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        token: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout),
            headers=headers,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        config: Dict[str, Any],
        token: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> "RecordsClient":
        api_config = config.get("api", {})
        return cls(
            base_url=api_config["base_url"],
            timeout=float(api_config.get("timeout_seconds", 30)),
            token=token,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "RecordsClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if method == "GET":
            # Cache-busting timestamp, as the web console does
            params = dict(kwargs.pop("params", None) or {})
            params["_t"] = int(time.time() * 1000)
            kwargs["params"] = params

        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            LOG.error("%s %s timed out: %s", method, path, exc)
            raise ApiError(TIMEOUT_MESSAGE) from exc
        except httpx.RequestError as exc:
            LOG.error("%s %s failed: %s", method, path, exc)
            raise ApiError(NETWORK_ERROR_MESSAGE) from exc

        if response.is_error:
            error = _error_from_response(response)
            LOG.error(
                "%s %s returned %s: %s", method, path, response.status_code, error.message
            )
            raise error

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError("Unexpected response from server") from exc

    # ------------------------------------------------------------------
    # Reference lists
    # ------------------------------------------------------------------

    def fetch_existing_identifiers(self, kind: RecordKind) -> List[str]:
        """Return every identifier already issued for a record kind."""
        records = self._request("GET", f"/{kind.resource}")
        identifiers = []
        for record in records or []:
            if isinstance(record, dict):
                value = string_or_empty(record.get(kind.identifier_field))
                if value:
                    identifiers.append(value)
        return identifiers

    def fetch_vehicle_catalog(self) -> List[Vehicle]:
        """Return the vehicle (bus) catalog."""
        catalog = []
        for bus in self._request("GET", "/buses") or []:
            if not isinstance(bus, dict):
                continue
            vehicle_id = ref_id(bus)
            if not vehicle_id:
                continue
            label = string_or_empty(
                bus.get("bus_number") or bus.get("vehicle_number") or bus.get("bus_id")
            )
            catalog.append(
                Vehicle(
                    id=vehicle_id,
                    label=label or vehicle_id,
                    route_ref=ref_id(bus.get("route_id")) or None,
                )
            )
        return catalog

    def fetch_stops(self, route_ref: str) -> Tuple[Stop, ...]:
        """Return the stops of a route, in itinerary order."""
        route = self._request("GET", f"/routes/{route_ref}")
        if isinstance(route, list):
            return parse_stops(route)
        return parse_stops((route or {}).get("stops"))

    # ------------------------------------------------------------------
    # Uploads and records
    # ------------------------------------------------------------------

    def upload_image(self, data: bytes, filename: str, content_type: str) -> str:
        """Upload an image and return its public URL."""
        body = self._request(
            "POST",
            PHOTO_UPLOAD_PATH,
            files={"image": (filename, data, content_type)},
        )
        url = string_or_empty((body or {}).get("imageUrl") or (body or {}).get("url"))
        if not url:
            raise ApiError("Upload succeeded but no image URL was returned")
        return url

    def create_record(self, resource: str, record: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"/{resource}", json=record) or {}

    def update_record(
        self, resource: str, record_id: str, record: Dict[str, Any]
    ) -> Dict[str, Any]:
        return self._request("PUT", f"/{resource}/{record_id}", json=record) or {}


def fetch_reference_snapshot(
    client: RecordsClient,
    kind: RecordKind,
    include_transport: bool = True,
) -> Tuple[ReferenceSnapshot, List[str]]:
    """Fetch the reference lists a wizard or form needs.

    Failures are non-fatal: the affected list is left empty and a warning is
    returned for display.

    Parameters
    ----------
    client : RecordsClient
        Records API client.
    kind : RecordKind
        Namespace for existing identifiers.
    include_transport : bool
        Also fetch vehicles and their route stops.

    Returns
    -------
    Tuple[ReferenceSnapshot, List[str]]
        The snapshot and any warnings raised while building it.
    """
    warnings: List[str] = []

    try:
        identifiers = tuple(client.fetch_existing_identifiers(kind))
    except ApiError as exc:
        LOG.warning("Could not load existing %s identifiers: %s", kind.value, exc.message)
        warnings.append(f"Could not load existing {kind.resource}: {exc.message}")
        identifiers = ()

    vehicles: List[Vehicle] = []
    stops: Dict[str, Tuple[Stop, ...]] = {}
    if include_transport:
        try:
            catalog = client.fetch_vehicle_catalog()
        except ApiError as exc:
            LOG.warning("Could not load vehicle catalog: %s", exc.message)
            warnings.append(f"Could not load buses: {exc.message}")
            catalog = []

        for vehicle in catalog:
            vehicles.append(vehicle)
            route_ref = vehicle.route_ref
            if not route_ref or route_ref in stops:
                continue
            try:
                stops[route_ref] = client.fetch_stops(route_ref)
            except ApiError as exc:
                LOG.warning("Could not load stops for route %s: %s", route_ref, exc.message)
                warnings.append(f"Could not load stops for {vehicle.label}: {exc.message}")
                stops[route_ref] = ()

    snapshot = ReferenceSnapshot(
        existing_identifiers=identifiers,
        vehicles=tuple(vehicles),
        stops=stops,
    )
    LOG.info(
        "Loaded %d identifiers, %d vehicles, %d routes",
        len(identifiers),
        len(vehicles),
        len(stops),
    )
    return snapshot, warnings
