"""Unified data models for the enrollment workflow.

This module provides the immutable dataclasses passed between the rule
engine, the wizard controller, the registration forms and the records API.
Drafts are never mutated in place: every edit produces a new draft value via
``with_value``, which keeps "only blur and step-advance re-validate" easy to
reason about.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from .enums import RecordKind, RuleGroup


@dataclass(frozen=True)
class FieldRef:
    """Reference to a single validated field of a draft.

    Fields
    ------
    group : RuleGroup
        Section the field belongs to.
    field : Enum
        Member of ``group.field_type`` naming the field.
    """

    group: RuleGroup
    field: Enum

    def __post_init__(self) -> None:
        if not isinstance(self.field, self.group.field_type):
            raise ValueError(
                f"{self.field!r} is not a field of group '{self.group.value}'"
            )

    @property
    def path(self) -> str:
        """Key used in error maps and touched sets (e.g. 'address.pincode')."""
        if self.group.is_nested:
            return f"{self.group.value}.{self.field.value}"
        return self.field.value

    @classmethod
    def parse(
        cls, path: str, flat_groups: Iterable[RuleGroup]
    ) -> "FieldRef":
        """Resolve a dotted path into a FieldRef.

        Parameters
        ----------
        path : str
            'first_name' for flat fields, 'address.pincode' for nested ones.
        flat_groups : Iterable[RuleGroup]
            Flat groups searched, in order, for undotted paths.

        Raises
        ------
        ValueError
            If the path does not name a known field.
        """
        if "." in path:
            group_name, field_name = path.split(".", 1)
            for group in RuleGroup:
                if group.is_nested and group.value == group_name:
                    try:
                        return cls(group, group.field_type(field_name))
                    except ValueError:
                        break
            raise ValueError(f"Unknown field path: {path}")

        for group in flat_groups:
            try:
                return cls(group, group.field_type(path))
            except ValueError:
                continue
        raise ValueError(f"Unknown field path: {path}")


class _DraftAccess:
    """Read and immutably update draft values through FieldRefs."""

    def value_of(self, ref: FieldRef) -> Any:
        if ref.group.is_nested:
            return getattr(getattr(self, ref.group.value), ref.field.value)
        return getattr(self, ref.field.value)

    def group_value(self, group: RuleGroup) -> Any:
        """Return the whole sub-record of a nested group."""
        return getattr(self, group.value)

    def with_value(self, ref: FieldRef, value: Any):
        if ref.group.is_nested:
            section = getattr(self, ref.group.value)
            return replace(
                self, **{ref.group.value: replace(section, **{ref.field.value: value})}
            )
        return replace(self, **{ref.field.value: value})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Address:
    address_line: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""


@dataclass(frozen=True)
class ClassInfo:
    grade: str = ""
    section: str = ""
    academic_year: str = ""


@dataclass(frozen=True)
class ParentDetails:
    """Guardian block: two guardians plus the designated primary phone."""

    father_name: str = ""
    father_phone: str = ""
    father_occupation: str = ""
    mother_name: str = ""
    mother_phone: str = ""
    mother_occupation: str = ""
    primary_contact: str = ""


@dataclass(frozen=True)
class TransportSelection:
    """Optional transport enrollment.

    Coordinates are kept as typed text until assembly, where they are parsed
    into floats for newly authored stops.
    """

    is_using_bus: bool = False
    bus_id: str = ""
    route_id: str = ""
    stop_name: str = ""
    latitude: str = ""
    longitude: str = ""
    is_new_stop: bool = False


@dataclass(frozen=True)
class StudentDraft(_DraftAccess):
    """In-progress student record built across the wizard steps.

    Fields
    ------
    identifier : str
        Derived identifier (e.g. '2026-4821-0001') or the pending sentinel.
        Never typed by the user.
    document_number : str
        Identity document number as typed (separators allowed).
    first_name, last_name, email : str
        Identity page fields.
    dob : str
        Date of birth in ISO format (YYYY-MM-DD).
    gender, blood_group, religion, nationality : str
        Biographical fields.
    roll_number, admission_number : str
        Optional unique school numbers; dropped at assembly when blank.
    joining_date : str
        ISO date of joining.
    photo_url : str
        URL returned by the image upload collaborator.
    address, class_info, parent_details, transport
        Nested sections.
    """

    identifier: str = ""
    document_number: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    dob: str = ""
    gender: str = "Male"
    blood_group: str = ""
    religion: str = ""
    nationality: str = "Indian"
    roll_number: str = ""
    admission_number: str = ""
    joining_date: str = ""
    photo_url: str = ""
    address: Address = field(default_factory=Address)
    class_info: ClassInfo = field(default_factory=ClassInfo)
    parent_details: ParentDetails = field(default_factory=ParentDetails)
    transport: TransportSelection = field(default_factory=TransportSelection)


@dataclass(frozen=True)
class EmployeeDraft(_DraftAccess):
    """In-progress staff, teacher or driver record (single-page form)."""

    kind: RecordKind = RecordKind.STAFF
    identifier: str = ""
    document_number: str = ""
    full_name: str = ""
    email: str = ""
    phone: str = ""
    dob: str = ""
    blood_group: str = ""
    designation: str = ""
    qualification: str = ""
    subjects: Tuple[str, ...] = ()
    joining_date: str = ""
    photo_url: str = ""
    license_number: str = ""
    license_expiry_date: str = ""
    experience: str = ""
    emergency_contact: str = ""
    assigned_bus_id: str = ""
    status: str = "Active"
    transport: TransportSelection = field(default_factory=TransportSelection)


@dataclass(frozen=True)
class Stop:
    """A stop on a route itinerary."""

    name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    order: Optional[int] = None


@dataclass(frozen=True)
class Vehicle:
    """Entry of the vehicle (bus) catalog."""

    id: str
    label: str
    route_ref: Optional[str] = None


@dataclass(frozen=True)
class ReferenceSnapshot:
    """Read-only snapshot of the reference lists fetched from the records API.

    The snapshot is injected into a wizard at construction and replaced
    wholesale on refresh; it may be stale by the time it is used.

    Parameters
    ----------
    existing_identifiers : Tuple[str, ...]
        Identifiers already issued in the namespace of the record kind.
    vehicles : Tuple[Vehicle, ...]
        Vehicle catalog.
    stops : Mapping[str, Tuple[Stop, ...]]
        Known stops per route reference.
    """

    existing_identifiers: Tuple[str, ...] = ()
    vehicles: Tuple[Vehicle, ...] = ()
    stops: Mapping[str, Tuple[Stop, ...]] = field(default_factory=dict)

    def vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        for vehicle in self.vehicles:
            if vehicle.id == vehicle_id:
                return vehicle
        return None

    def stops_for(self, route_ref: Optional[str]) -> Tuple[Stop, ...]:
        if not route_ref:
            return ()
        return tuple(self.stops.get(route_ref, ()))


@dataclass(frozen=True)
class StepOutcome:
    """Result of a step-advance attempt."""

    advanced: bool
    step: int
    errors: Dict[str, str]


@dataclass(frozen=True)
class SubmitResult:
    """Result of a submit attempt.

    Parameters
    ----------
    ok : bool
        True when the record was accepted by the records API.
    record : Optional[Dict[str, Any]]
        Assembled record that was (or would have been) sent.
    response : Optional[Dict[str, Any]]
        Body returned by the records API on success.
    message : Optional[str]
        User-facing failure message.
    errors : Dict[str, str]
        Field errors that blocked submission.
    retryable : bool
        True for identifier conflicts the user can fix and resubmit.
    """

    ok: bool
    record: Optional[Dict[str, Any]] = None
    response: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    errors: Dict[str, str] = field(default_factory=dict)
    retryable: bool = False
