"""Four-step student enrollment wizard.

Steps: Identity -> Personal -> Class & Family -> Transport (optional).

**Navigation Contract:**
- ``advance()`` validates only the current step's fields. On success the
  step increases (capped at the last step) and the error map is cleared; on
  failure the errors are recorded, the offending fields are marked touched
  and the step does not change.
- ``retreat()`` always moves back one step (floored at the first) and clears
  the error map without validating.
- ``blur(field)`` re-validates a single field.
- ``submit()`` is only available on the last step. It re-validates steps 1-3
  regardless of touch state; any failure sends the user back to step 1.
  Transport is validated only when enabled, and collapses to
  ``{"is_using_bus": False}`` otherwise.

**Identifier Contract:**
- New records re-derive the advisory identifier every time the identity
  document number changes or the reference snapshot is refreshed.
- Records loaded for editing keep their identifier.
- A still-pending identifier is left out of the submitted record so the
  records API assigns one.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Dict, Mapping, Optional

from .api_client import RecordsClient
from .config_loader import age_limits_for, default_config
from .data_models import (
    Address,
    ClassInfo,
    ParentDetails,
    ReferenceSnapshot,
    StepOutcome,
    StudentDraft,
    SubmitResult,
    TransportSelection,
)
from .enums import RecordKind, Step
from .identifiers import PENDING_IDENTIFIER, normalize_document_number
from .rules import REQUIRED_STEPS, STEP_FIELDS, build_student_rules, calculate_age
from .session import BUSY_MESSAGE, FormSession, WizardStateError
from .utils import (
    format_display_date,
    iso_date_or_empty,
    parse_iso_date,
    ref_id,
    split_full_name,
    string_or_empty,
)

LOG = logging.getLogger(__name__)

DOCUMENT_NUMBER_KEY = "aadhaar_number"


def draft_from_record(record: Mapping[str, Any]) -> StudentDraft:
    """Map a stored student record back into an editable draft.

    The stored full name is split on its first space; family, contact and
    permanent address blocks are flattened into the draft sections.
    """
    first_name, last_name = split_full_name(record.get("full_name"))
    family = record.get("family") or {}
    father = family.get("father") or {}
    mother = family.get("mother") or {}
    contact = record.get("contact_info") or {}
    permanent = (record.get("address") or {}).get("permanent") or {}
    class_info = record.get("class_info") or {}
    transport = record.get("transport") or {}
    documents = record.get("documents") or {}

    def text(source: Mapping[str, Any], key: str) -> str:
        return string_or_empty(source.get(key))

    return StudentDraft(
        identifier=text(record, RecordKind.STUDENT.identifier_field),
        document_number=text(record, DOCUMENT_NUMBER_KEY),
        first_name=first_name,
        last_name=last_name,
        email=text(contact, "email") or text(record, "email"),
        dob=iso_date_or_empty(record.get("dob")),
        gender=text(record, "gender") or "Male",
        blood_group=text(record, "blood_group"),
        religion=text(record, "religion"),
        nationality=text(record, "nationality"),
        roll_number=text(record, "roll_number"),
        admission_number=text(record, "admission_number"),
        joining_date=iso_date_or_empty(record.get("joining_date")),
        photo_url=text(documents, "photo_url"),
        address=Address(
            address_line=text(permanent, "address_line"),
            city=text(permanent, "city"),
            state=text(permanent, "state"),
            pincode=text(permanent, "pincode"),
        ),
        class_info=ClassInfo(
            grade=text(class_info, "grade"),
            section=text(class_info, "section"),
            academic_year=text(class_info, "academic_year"),
        ),
        parent_details=ParentDetails(
            father_name=text(father, "name"),
            father_phone=text(father, "phone"),
            father_occupation=text(father, "occupation"),
            mother_name=text(mother, "name"),
            mother_phone=text(mother, "phone"),
            mother_occupation=text(mother, "occupation"),
            primary_contact=text(contact, "phone"),
        ),
        transport=TransportSelection(
            is_using_bus=bool(transport.get("is_using_bus")),
            bus_id=ref_id(transport.get("bus_id")),
            route_id=ref_id(transport.get("route_id")),
            stop_name=text(transport, "stop_name"),
            latitude=text(transport, "latitude"),
            longitude=text(transport, "longitude"),
            is_new_stop=bool(transport.get("is_new_stop")),
        ),
    )


class EnrollmentWizard(FormSession):
    """Controller for the stepped student enrollment form.

    Parameters
    ----------
    references : ReferenceSnapshot, optional
        Existing identifiers, vehicles and stops.
    client : RecordsClient, optional
        Records API client used for uploads and submission.
    config : Dict[str, Any], optional
        Loaded configuration (age limits, fail-open policy, locale, ...).
    clock : Callable[[], date]
        Returns "today" (DOB checks, identifier year, default dates).
    existing : Mapping[str, Any], optional
        Stored record to edit. Its '_id' (or 'id') is used for the update
        call and its identifier is never recomputed.
    """

    def __init__(
        self,
        references: Optional[ReferenceSnapshot] = None,
        client: Optional[RecordsClient] = None,
        config: Optional[Dict[str, Any]] = None,
        clock: Callable[[], date] = date.today,
        existing: Optional[Mapping[str, Any]] = None,
    ) -> None:
        config = config or default_config()
        min_age, max_age = age_limits_for(config, RecordKind.STUDENT)
        rules = build_student_rules(
            clock=clock,
            min_age=min_age,
            max_age=max_age,
            fail_open=config.get("validation", {}).get("fail_open", True),
        )

        if existing is not None:
            draft = draft_from_record(existing)
            record_id = ref_id(existing) or None
            if record_id is None:
                raise ValueError("Existing record has no '_id' or 'id'")
        else:
            today = clock()
            draft = StudentDraft(
                joining_date=today.isoformat(),
                class_info=ClassInfo(academic_year=str(today.year)),
            )
            record_id = None

        super().__init__(
            RecordKind.STUDENT,
            draft,
            rules,
            references=references,
            client=client,
            config=config,
            clock=clock,
            record_id=record_id,
        )
        self.step: Step = Step.first()

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    @property
    def is_last_step(self) -> bool:
        return self.step == Step.last()

    def advance(self) -> StepOutcome:
        """Validate the current step and move forward if it passes."""
        current = Step(self.step)
        refs = STEP_FIELDS[current]
        errors = self.rules.check(self.draft, refs)

        if errors:
            self.errors = dict(errors)
            self.touched.update(errors)
            LOG.info("Step %s blocked by %d error(s)", current.title, len(errors))
            return StepOutcome(advanced=False, step=int(current), errors=dict(errors))

        self.touched.update(ref.path for ref in refs)
        self.errors = {}
        self.step = Step(min(current + 1, Step.last()))
        return StepOutcome(advanced=True, step=int(self.step), errors={})

    def retreat(self) -> Step:
        """Move back one step without validating."""
        self.step = Step(max(self.step - 1, Step.first()))
        self.errors = {}
        return self.step

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def validate_all(self) -> Dict[str, str]:
        """Errors of every required step, ignoring touch state."""
        errors: Dict[str, str] = {}
        for step in REQUIRED_STEPS:
            errors.update(self.rules.check(self.draft, STEP_FIELDS[step]))
        return errors

    def transport_errors(self) -> Dict[str, str]:
        """Errors of the transport step; empty when transport is disabled."""
        if not self.draft.transport.is_using_bus:
            return {}
        return self.rules.check(self.draft, STEP_FIELDS[Step.TRANSPORT])

    def submit(self) -> SubmitResult:
        """Re-validate everything and send the assembled record.

        Returns
        -------
        SubmitResult
            ``ok`` is True when the records API accepted the record. On
            validation failure ``errors`` holds the blocking field errors; on
            API failure ``message`` holds the server message and the draft
            and step are left untouched.

        Raises
        ------
        WizardStateError
            If called before reaching the last step.
        """
        if self.busy:
            return SubmitResult(ok=False, message=BUSY_MESSAGE)
        if not self.is_last_step:
            raise WizardStateError("Submit is only available on the last step")

        errors = self.validate_all()
        if errors:
            self._flag(errors)
            self.step = Step.first()
            LOG.info("Submit blocked by %d error(s)", len(errors))
            return SubmitResult(
                ok=False,
                errors=dict(errors),
                message=f"Please fix {len(errors)} field(s) before submitting",
            )

        transport_errors = self.transport_errors()
        if transport_errors:
            self._flag(transport_errors)
            return SubmitResult(
                ok=False,
                errors=dict(transport_errors),
                message="Please complete the transport details",
            )

        self.errors = {}
        return self._send(self.assemble_record())

    def assemble_record(self) -> Dict[str, Any]:
        """Build the record in the shape the records API stores."""
        d = self.draft
        parents = d.parent_details

        record: Dict[str, Any] = {
            RecordKind.STUDENT.identifier_field: d.identifier,
            DOCUMENT_NUMBER_KEY: normalize_document_number(d.document_number),
            "first_name": string_or_empty(d.first_name),
            "last_name": string_or_empty(d.last_name),
            "full_name": f"{string_or_empty(d.first_name)} {string_or_empty(d.last_name)}".strip(),
            "dob": iso_date_or_empty(d.dob),
            "joining_date": iso_date_or_empty(d.joining_date),
            "gender": d.gender,
            "blood_group": d.blood_group,
            "religion": string_or_empty(d.religion),
            "nationality": string_or_empty(d.nationality),
            "roll_number": string_or_empty(d.roll_number),
            "admission_number": string_or_empty(d.admission_number),
            "class_info": {
                "grade": string_or_empty(d.class_info.grade),
                "section": string_or_empty(d.class_info.section),
                "academic_year": string_or_empty(d.class_info.academic_year),
            },
            "contact_info": {
                "phone": string_or_empty(parents.primary_contact),
                "email": string_or_empty(d.email),
            },
            "family": {
                "father": {
                    "name": string_or_empty(parents.father_name),
                    "phone": string_or_empty(parents.father_phone),
                    "occupation": string_or_empty(parents.father_occupation),
                },
                "mother": {
                    "name": string_or_empty(parents.mother_name),
                    "phone": string_or_empty(parents.mother_phone),
                    "occupation": string_or_empty(parents.mother_occupation),
                },
            },
            "address": {
                "permanent": {
                    "address_line": string_or_empty(d.address.address_line),
                    "city": string_or_empty(d.address.city),
                    "state": string_or_empty(d.address.state),
                    "pincode": string_or_empty(d.address.pincode),
                }
            },
            "documents": {"photo_url": d.photo_url},
            "transport": self._assemble_transport(),
        }

        # Unique numbers must be absent rather than blank
        for key in ("roll_number", "admission_number"):
            if not record[key]:
                del record[key]

        return self._finalize_identifier(record)

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def review(self) -> Dict[str, str]:
        """Display values for the confirmation panel."""
        d = self.draft
        locale = self.config.get("display", {}).get("locale", "en_IN")

        try:
            age = str(calculate_age(parse_iso_date(d.dob), self.clock()))
        except ValueError:
            age = ""

        transport = d.transport
        if transport.is_using_bus and transport.bus_id:
            vehicle = self.references.vehicle(transport.bus_id)
            label = vehicle.label if vehicle else transport.bus_id
            transport_line = f"Bus {label}, stop {transport.stop_name or '(not chosen)'}"
            if transport.is_new_stop:
                transport_line += " (new stop)"
        else:
            transport_line = "Not using school transport"

        grade, section = d.class_info.grade, d.class_info.section
        return {
            "identifier": "Pending" if d.identifier == PENDING_IDENTIFIER else d.identifier,
            "full_name": f"{d.first_name} {d.last_name}".strip(),
            "date_of_birth": format_display_date(d.dob, locale=locale),
            "age": age,
            "class": f"{grade}-{section}" if grade and section else grade,
            "primary_contact": d.parent_details.primary_contact,
            "transport": transport_line,
        }
