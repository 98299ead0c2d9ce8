"""Shared state and behaviour of enrollment and registration forms.

A form session owns exactly one draft and the bookkeeping around it:

- ``errors``: error map, field path -> message (absent key means no error)
- ``touched``: field paths the user has left at least once; only used to
  decide which errors to display
- ``notices``: non-fatal messages for the user (failed fetches, uploads)
- ``busy``: True while a submit call is outstanding

Sessions run on a single interaction thread. Every edit replaces the draft
with a new value; validation only runs on blur, on step advance and on
submit.
"""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import replace
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

from .api_client import ApiError, RecordsClient, fetch_reference_snapshot
from .config_loader import default_config, identifier_prefix_for
from .data_models import FieldRef, ReferenceSnapshot, Stop, SubmitResult
from .enums import RecordKind, RuleGroup
from .identifiers import generate_identifier, is_pending
from .rules import RuleTable
from .transport import LATITUDE_RANGE, LONGITUDE_RANGE, match_stop, parse_coordinate
from .utils import string_or_empty

LOG = logging.getLogger(__name__)

SUMMARY_LIMIT = 3
BUSY_MESSAGE = "A submission is already in progress"

FieldKey = Union[str, FieldRef]


class WizardStateError(RuntimeError):
    """An operation was requested in a state that does not allow it."""


class FormSession:
    """Base class for the student wizard and the employee forms.

    Parameters
    ----------
    kind : RecordKind
        Kind of record being registered.
    draft : StudentDraft | EmployeeDraft
        Initial draft.
    rules : RuleTable
        Rules used for blur, step and submit validation.
    references : ReferenceSnapshot, optional
        Reference lists (existing identifiers, vehicles, stops).
    client : RecordsClient, optional
        Records API client used for uploads and submission.
    config : Dict[str, Any], optional
        Loaded configuration; defaults to the built-in defaults.
    clock : Callable[[], date]
        Returns "today".
    record_id : str, optional
        Server id of the record being edited; None for a new record.
    """

    def __init__(
        self,
        kind: RecordKind,
        draft: Any,
        rules: RuleTable,
        references: Optional[ReferenceSnapshot] = None,
        client: Optional[RecordsClient] = None,
        config: Optional[Dict[str, Any]] = None,
        clock: Callable[[], date] = date.today,
        record_id: Optional[str] = None,
    ) -> None:
        self.kind = kind
        self.draft = draft
        self.rules = rules
        self.references = references or ReferenceSnapshot()
        self.client = client
        self.config = config or default_config()
        self.clock = clock
        self.record_id = record_id
        self.errors: Dict[str, str] = {}
        self.touched: Set[str] = set()
        self.notices: List[str] = []
        self.busy = False
        self.uploading = False

        if not self.is_editing:
            self.refresh_identifier()

    @property
    def is_editing(self) -> bool:
        return self.record_id is not None

    # ------------------------------------------------------------------
    # Field editing and blur validation
    # ------------------------------------------------------------------

    def ref(self, key: FieldKey) -> FieldRef:
        if isinstance(key, FieldRef):
            return key
        return FieldRef.parse(key, self.rules.flat_groups)

    def get(self, key: FieldKey) -> Any:
        return self.draft.value_of(self.ref(key))

    def set_field(self, key: FieldKey, value: Any) -> Any:
        """Replace one field value; returns the new draft."""
        ref = self.ref(key)
        self.draft = self.draft.with_value(ref, value)
        if ref.field.value == "document_number":
            self.refresh_identifier()
        return self.draft

    def update(self, values: Dict[str, Any]) -> Any:
        """Apply several ``path -> value`` edits in order."""
        for path, value in values.items():
            self.set_field(path, value)
        return self.draft

    def blur(self, key: FieldKey) -> Optional[str]:
        """Mark a field touched and re-run its rule.

        Returns
        -------
        Optional[str]
            The field's current error message, or None if it passes.
        """
        ref = self.ref(key)
        self.touched.add(ref.path)
        message = self.rules.check_field(ref, self.draft)
        if message:
            self.errors[ref.path] = message
        else:
            self.errors.pop(ref.path, None)
        return message

    def visible_errors(self) -> Dict[str, str]:
        """Errors of touched fields only (what the form displays inline)."""
        return {path: msg for path, msg in self.errors.items() if path in self.touched}

    def error_summary(self, limit: int = SUMMARY_LIMIT) -> List[str]:
        """Messages for the summary banner: the first ``limit`` plus an overflow line."""
        messages = list(self.errors.values())
        if len(messages) <= limit:
            return messages
        return messages[:limit] + [f"...and {len(messages) - limit} more"]

    def _flag(self, errors: Dict[str, str]) -> None:
        self.errors.update(errors)
        self.touched.update(errors)

    # ------------------------------------------------------------------
    # Reference lists and identifier
    # ------------------------------------------------------------------

    def refresh_references(self, snapshot: ReferenceSnapshot) -> None:
        """Replace the reference snapshot and re-derive the identifier."""
        self.references = snapshot
        self.refresh_identifier()

    def load_references(self) -> List[str]:
        """Fetch a fresh snapshot through the client; returns any warnings."""
        client = self._require_client()
        snapshot, warnings = fetch_reference_snapshot(
            client, self.kind, include_transport=self.uses_transport
        )
        self.notices.extend(warnings)
        self.refresh_references(snapshot)
        return warnings

    @property
    def uses_transport(self) -> bool:
        return any(ref.group is RuleGroup.TRANSPORT for ref in self.rules.refs())

    def refresh_identifier(self) -> str:
        """Re-derive the advisory identifier; persisted records keep theirs."""
        if self.is_editing:
            return self.draft.identifier
        identifier = generate_identifier(
            self.draft.document_number,
            self.references.existing_identifiers,
            year=self.clock().year,
            prefix=identifier_prefix_for(self.config, self.kind),
        )
        if identifier != self.draft.identifier:
            self.draft = replace(self.draft, identifier=identifier)
        return identifier

    @property
    def identifier_is_pending(self) -> bool:
        return is_pending(self.draft.identifier)

    # ------------------------------------------------------------------
    # Transport selection
    # ------------------------------------------------------------------

    def set_transport_enabled(self, enabled: bool) -> None:
        self.draft = replace(
            self.draft, transport=replace(self.draft.transport, is_using_bus=bool(enabled))
        )

    def available_stops(self) -> Tuple[Stop, ...]:
        return self.references.stops_for(self.draft.transport.route_id)

    def select_vehicle(self, vehicle_id: str) -> None:
        """Choose a vehicle; clears the stop and follows the vehicle's route.

        Routes without known stops switch the form to new-stop entry.
        """
        vehicle_id = string_or_empty(vehicle_id)
        vehicle = self.references.vehicle(vehicle_id) if vehicle_id else None
        route_ref = vehicle.route_ref if vehicle and vehicle.route_ref else ""
        has_stops = bool(self.references.stops_for(route_ref))
        self.draft = replace(
            self.draft,
            transport=replace(
                self.draft.transport,
                bus_id=vehicle_id,
                route_id=route_ref,
                stop_name="",
                latitude="",
                longitude="",
                is_new_stop=bool(vehicle_id) and not has_stops,
            ),
        )

    def select_stop(self, name: str) -> Optional[Stop]:
        """Choose a stop by name.

        A name matching a known stop of the selected route adopts that stop's
        canonical name and coordinates. Anything else is a new stop.

        Returns
        -------
        Optional[Stop]
            The matched known stop, or None for a new stop.
        """
        threshold = self.config.get("transport", {}).get("stop_match_threshold", 85)
        stop = match_stop(name, self.available_stops(), threshold)
        if stop is None:
            self.author_stop(name)
            return None

        self.draft = replace(
            self.draft,
            transport=replace(
                self.draft.transport,
                stop_name=stop.name,
                latitude="" if stop.latitude is None else str(stop.latitude),
                longitude="" if stop.longitude is None else str(stop.longitude),
                is_new_stop=False,
            ),
        )
        return stop

    def author_stop(self, name: str, latitude: Any = "", longitude: Any = "") -> None:
        """Enter a stop that is not on the route yet, with optional coordinates."""
        self.draft = replace(
            self.draft,
            transport=replace(
                self.draft.transport,
                stop_name=string_or_empty(name),
                latitude=string_or_empty(latitude),
                longitude=string_or_empty(longitude),
                is_new_stop=True,
            ),
        )

    def _assemble_transport(self) -> Dict[str, Any]:
        transport = self.draft.transport
        if not transport.is_using_bus:
            return {"is_using_bus": False}

        assembled: Dict[str, Any] = {
            "is_using_bus": True,
            "bus_id": string_or_empty(transport.bus_id),
            "stop_name": string_or_empty(transport.stop_name),
        }
        if string_or_empty(transport.route_id):
            assembled["route_id"] = string_or_empty(transport.route_id)
        if transport.is_new_stop:
            assembled["is_new_stop"] = True

        try:
            latitude = parse_coordinate(transport.latitude, LATITUDE_RANGE)
            longitude = parse_coordinate(transport.longitude, LONGITUDE_RANGE)
        except ValueError:
            # Only new stops are checked by the coordinate rules
            latitude = longitude = None
        if latitude is not None and longitude is not None:
            assembled["latitude"] = latitude
            assembled["longitude"] = longitude
        return assembled

    # ------------------------------------------------------------------
    # Photo upload
    # ------------------------------------------------------------------

    def attach_photo(
        self, data: bytes, filename: str, content_type: Optional[str] = None
    ) -> bool:
        """Upload a photo and store its URL on the draft.

        The file must be an image no larger than ``uploads.max_image_bytes``.
        Any failure is reported as a notice and leaves the photo unset.

        Returns
        -------
        bool
            True when the photo URL was stored.
        """
        content_type = content_type or mimetypes.guess_type(filename)[0] or ""
        if not content_type.startswith("image/"):
            self.notices.append("Please choose an image file")
            LOG.warning("Rejected upload %s with type '%s'", filename, content_type)
            return False

        max_bytes = self.config.get("uploads", {}).get("max_image_bytes", 5 * 1024 * 1024)
        if len(data) > max_bytes:
            self.notices.append(
                f"Image must be {max_bytes // (1024 * 1024)} MB or smaller"
            )
            LOG.warning("Rejected upload %s of %d bytes", filename, len(data))
            return False

        client = self._require_client()
        self.uploading = True
        try:
            url = client.upload_image(data, filename, content_type)
        except ApiError as exc:
            LOG.warning("Photo upload failed: %s", exc.message)
            self.notices.append(f"Photo upload failed: {exc.message}")
            return False
        finally:
            self.uploading = False

        self.draft = replace(self.draft, photo_url=url)
        return True

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _require_client(self) -> RecordsClient:
        if self.client is None:
            raise WizardStateError("No records client configured")
        return self.client

    def _send(self, record: Dict[str, Any]) -> SubmitResult:
        client = self._require_client()
        self.busy = True
        try:
            if self.is_editing:
                response = client.update_record(self.kind.resource, self.record_id, record)
            else:
                response = client.create_record(self.kind.resource, record)
        except ApiError as exc:
            LOG.error("Submitting %s record failed: %s", self.kind.value, exc.message)
            return SubmitResult(
                ok=False, record=record, message=exc.message, retryable=exc.retryable
            )
        finally:
            self.busy = False

        LOG.info(
            "%s %s record %s",
            "Updated" if self.is_editing else "Created",
            self.kind.value,
            record.get(self.kind.identifier_field, "(server-assigned)"),
        )
        return SubmitResult(ok=True, record=record, response=response)

    def _finalize_identifier(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Drop a still-pending identifier so the server assigns one."""
        if is_pending(record.get(self.kind.identifier_field)):
            record.pop(self.kind.identifier_field, None)
        return record
