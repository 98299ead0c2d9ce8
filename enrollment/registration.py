"""Single-page registration forms for staff, teachers and drivers.

These forms share the session machinery of the student wizard (blur
validation, identifier derivation, photo upload, guarded submission) but
have no steps: ``submit()`` validates every field at once.

Identifiers carry a kind prefix, e.g. ``STF-2026-4821-0001``.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import Any, Callable, Dict, Mapping, Optional

from .api_client import RecordsClient
from .config_loader import age_limits_for, default_config
from .data_models import EmployeeDraft, ReferenceSnapshot, SubmitResult, TransportSelection
from .enums import RecordKind
from .identifiers import normalize_document_number
from .rules import WHOLE_NUMBER_PATTERN, build_employee_rules
from .session import BUSY_MESSAGE, FormSession
from .utils import iso_date_or_empty, ref_id, string_or_empty
from .wizard import DOCUMENT_NUMBER_KEY

LOG = logging.getLogger(__name__)


def employee_draft_from_record(kind: RecordKind, record: Mapping[str, Any]) -> EmployeeDraft:
    """Map a stored staff, teacher or driver record back into a draft."""
    transport = record.get("transport") or {}
    subjects = record.get("subjects") or ()
    if isinstance(subjects, str):
        subjects = [s for s in (part.strip() for part in subjects.split(",")) if s]

    def text(key: str) -> str:
        return string_or_empty(record.get(key))

    return EmployeeDraft(
        kind=kind,
        identifier=text(kind.identifier_field),
        document_number=text(DOCUMENT_NUMBER_KEY),
        full_name=text("full_name"),
        email=text("email"),
        phone=text("phone") or text("phone_number"),
        dob=iso_date_or_empty(record.get("dob")),
        blood_group=text("blood_group"),
        designation=text("designation"),
        qualification=text("qualification"),
        subjects=tuple(ref_id(s) for s in subjects),
        joining_date=iso_date_or_empty(record.get("joining_date")),
        photo_url=text("photo_url"),
        license_number=text("license_number"),
        license_expiry_date=iso_date_or_empty(record.get("license_expiry_date")),
        experience=text("experience"),
        emergency_contact=text("emergency_contact"),
        assigned_bus_id=ref_id(record.get("assigned_bus_id")),
        status=text("status") or "Active",
        transport=TransportSelection(
            is_using_bus=bool(transport.get("is_using_bus")),
            bus_id=ref_id(transport.get("bus_id")),
            route_id=ref_id(transport.get("route_id")),
            stop_name=string_or_empty(transport.get("stop_name")),
        ),
    )


class EmployeeForm(FormSession):
    """Registration form for a staff member, teacher or driver.

    Parameters
    ----------
    kind : RecordKind
        STAFF, TEACHER or DRIVER.
    references, client, config, clock
        As for EnrollmentWizard.
    existing : Mapping[str, Any], optional
        Stored record to edit.

    Raises
    ------
    ValueError
        If kind is STUDENT, or an existing record has no id.
    """

    def __init__(
        self,
        kind: RecordKind,
        references: Optional[ReferenceSnapshot] = None,
        client: Optional[RecordsClient] = None,
        config: Optional[Dict[str, Any]] = None,
        clock: Callable[[], date] = date.today,
        existing: Optional[Mapping[str, Any]] = None,
    ) -> None:
        if not kind.is_employee:
            raise ValueError("Use EnrollmentWizard for student records")

        config = config or default_config()
        min_age, max_age = age_limits_for(config, kind)
        rules = build_employee_rules(
            kind,
            clock=clock,
            min_age=min_age,
            max_age=max_age,
            fail_open=config.get("validation", {}).get("fail_open", True),
        )

        if existing is not None:
            draft = employee_draft_from_record(kind, existing)
            record_id = ref_id(existing) or None
            if record_id is None:
                raise ValueError("Existing record has no '_id' or 'id'")
        else:
            draft = EmployeeDraft(kind=kind, joining_date=clock().isoformat())
            record_id = None

        super().__init__(
            kind,
            draft,
            rules,
            references=references,
            client=client,
            config=config,
            clock=clock,
            record_id=record_id,
        )

    def set_subjects(self, subjects: Any) -> None:
        """Accept a list of subject ids or a comma-separated string."""
        if isinstance(subjects, str):
            subjects = [part.strip() for part in subjects.split(",")]
        self.draft = replace(self.draft, subjects=tuple(s for s in subjects if s))

    def validate(self) -> Dict[str, str]:
        """Validate every field; records and returns the error map."""
        errors = self.rules.check(self.draft)
        self.errors = dict(errors)
        self.touched.update(errors)
        return errors

    def submit(self) -> SubmitResult:
        if self.busy:
            return SubmitResult(ok=False, message=BUSY_MESSAGE)

        errors = self.validate()
        if errors:
            LOG.info("%s registration blocked by %d error(s)", self.kind.value, len(errors))
            return SubmitResult(
                ok=False,
                errors=dict(errors),
                message=f"Please fix {len(errors)} field(s) before submitting",
            )
        return self._send(self.assemble_record())

    def assemble_record(self) -> Dict[str, Any]:
        d = self.draft
        record: Dict[str, Any] = {
            self.kind.identifier_field: d.identifier,
            DOCUMENT_NUMBER_KEY: normalize_document_number(d.document_number),
            "full_name": string_or_empty(d.full_name),
            "email": string_or_empty(d.email),
            "phone": string_or_empty(d.phone),
            "dob": iso_date_or_empty(d.dob),
            "blood_group": d.blood_group,
            "photo_url": d.photo_url,
            "joining_date": iso_date_or_empty(d.joining_date),
            "status": d.status,
        }

        if self.kind is RecordKind.DRIVER:
            experience = string_or_empty(d.experience)
            years = int(experience) if WHOLE_NUMBER_PATTERN.match(experience) else 0
            record.update(
                {
                    "license_number": string_or_empty(d.license_number),
                    "license_expiry_date": iso_date_or_empty(d.license_expiry_date),
                    "experience": years,
                    "emergency_contact": string_or_empty(d.emergency_contact),
                    "assigned_bus_id": string_or_empty(d.assigned_bus_id) or None,
                }
            )
        else:
            record.update(
                {
                    "role_type": self.kind.value,
                    "designation": string_or_empty(d.designation),
                    "qualification": string_or_empty(d.qualification),
                    "subjects": list(d.subjects),
                    "transport": self._assemble_transport(),
                }
            )

        return self._finalize_identifier(record)
