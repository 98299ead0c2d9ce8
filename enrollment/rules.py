"""Declarative validation rules for enrollment and registration drafts.

A rule is a function ``(value) -> message | None``. Rules are organised into
rule sets, one per RuleGroup, and a RuleTable evaluates them through a single
``evaluate(group, field, value)`` interface.

**Rule set variants:**
- ``FlatRules``: fields stored directly on the draft (``draft.first_name``)
- ``NestedRules``: fields of a nested sub-record (``draft.address.pincode``)
- ``GroupRules``: compound rules that receive the whole sub-record
  (``draft.transport``), used where validity depends on sibling fields

**Failure policy (fail-open):**
A rule that raises is logged and treated as "no error", so a faulty rule
never blocks data entry. Setting ``validation.fail_open: false`` in the
configuration reports FAIL_CLOSED_MESSAGE for the field instead. This changes
accept/reject outcomes and is off by default.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from .data_models import FieldRef, TransportSelection
from .enums import (
    AddressField,
    BloodGroup,
    ClassField,
    EmployeeField,
    Gender,
    GuardianField,
    IdentityField,
    PersonalField,
    RecordKind,
    RuleGroup,
    Step,
    TransportField,
)
from .identifiers import is_complete_document_number
from .transport import LATITUDE_RANGE, LONGITUDE_RANGE, parse_coordinate
from .utils import parse_iso_date, string_or_empty

LOG = logging.getLogger(__name__)

Rule = Callable[[Any], Optional[str]]
Clock = Callable[[], date]

FAIL_CLOSED_MESSAGE = "Could not validate this field"

NAME_PATTERN = re.compile(r"^[A-Za-z ]+$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^[6-9][0-9]{9}$")
PINCODE_PATTERN = re.compile(r"^[0-9]{6}$")
WHOLE_NUMBER_PATTERN = re.compile(r"^[0-9]+$")


# ============================================================================
# Rule functions
# ============================================================================


def calculate_age(dob: date, today: date) -> int:
    """Return age in whole years using calendar year/month/day subtraction.

    Parameters
    ----------
    dob : date
        Date of birth.
    today : date
        Reference date.

    Returns
    -------
    int
        Completed years between dob and today.
    """
    age = today.year - dob.year

    # Adjust if the birthday hasn't occurred yet this year
    if (today.month, today.day) < (dob.month, dob.day):
        age -= 1

    return age


def required(label: str) -> Rule:
    def rule(value: Any) -> Optional[str]:
        if not string_or_empty(value):
            return f"{label} is required"
        return None

    return rule


def document_number_rule(value: Any) -> Optional[str]:
    """Identity document: required, exactly 12 digits once separators are removed."""
    if not string_or_empty(value):
        return "Identity document number is required"
    if not is_complete_document_number(value):
        return "Identity document number must be exactly 12 digits"
    return None


def name_rule(label: str, min_length: int = 1, is_required: bool = True) -> Rule:
    def rule(value: Any) -> Optional[str]:
        text = string_or_empty(value)
        if not text:
            return f"{label} is required" if is_required else None
        if len(text) < min_length:
            return f"{label} must be at least {min_length} characters"
        if not NAME_PATTERN.match(text):
            return f"{label} may contain only letters and spaces"
        return None

    return rule


def email_rule(is_required: bool = False) -> Rule:
    def rule(value: Any) -> Optional[str]:
        text = string_or_empty(value)
        if not text:
            return "Email is required" if is_required else None
        if not EMAIL_PATTERN.match(text):
            return "Invalid email address"
        return None

    return rule


def phone_rule(label: str, is_required: bool = False) -> Rule:
    """10-digit mobile number starting with 6-9."""

    def rule(value: Any) -> Optional[str]:
        text = string_or_empty(value)
        if not text:
            return f"{label} is required" if is_required else None
        if not PHONE_PATTERN.match(text):
            return f"{label} must be 10 digits starting with 6-9"
        return None

    return rule


def dob_rule(
    clock: Clock,
    min_age: Optional[int] = None,
    max_age: Optional[int] = None,
    noun: str = "Student",
) -> Rule:
    """Date of birth: required, not in the future, age within [min_age, max_age]."""

    def rule(value: Any) -> Optional[str]:
        if not string_or_empty(value):
            return "Date of birth is required"
        try:
            dob = parse_iso_date(value)
        except ValueError:
            return "Enter a valid date (YYYY-MM-DD)"

        today = clock()
        if dob > today:
            return "Date of birth cannot be in the future"

        age = calculate_age(dob, today)
        if min_age is not None and age < min_age:
            return f"{noun} must be at least {min_age} years old (current age: {age})"
        if max_age is not None and age > max_age:
            return f"{noun} must be at most {max_age} years old (current age: {age})"
        return None

    return rule


def optional_date_rule(label: str) -> Rule:
    def rule(value: Any) -> Optional[str]:
        if not string_or_empty(value):
            return None
        try:
            parse_iso_date(value)
        except ValueError:
            return f"{label} must be a valid date (YYYY-MM-DD)"
        return None

    return rule


def pincode_rule(value: Any) -> Optional[str]:
    text = string_or_empty(value)
    if not text:
        return "Postal code is required"
    if not PINCODE_PATTERN.match(text):
        return "Postal code must be exactly 6 digits"
    return None


def section_rule(value: Any) -> Optional[str]:
    text = string_or_empty(value)
    if not text:
        return "Section is required"
    if len(text) != 1:
        return "Section must be a single character"
    return None


def choice_rule(label: str, choices: Iterable[str], is_required: bool = True) -> Rule:
    allowed = frozenset(choices)

    def rule(value: Any) -> Optional[str]:
        text = string_or_empty(value)
        if not text:
            return f"{label} is required" if is_required else None
        if text not in allowed:
            return f"{label} must be one of: {', '.join(sorted(allowed))}"
        return None

    return rule


def non_negative_int_rule(label: str) -> Rule:
    def rule(value: Any) -> Optional[str]:
        text = string_or_empty(value)
        if not text:
            return None
        if not WHOLE_NUMBER_PATTERN.match(text):
            return f"{label} must be a whole number of years"
        return None

    return rule


# Compound transport rules receive the whole TransportSelection


def vehicle_selected(transport: TransportSelection) -> Optional[str]:
    if transport.is_using_bus and not string_or_empty(transport.bus_id):
        return "Please select a bus"
    return None


def stop_selected(transport: TransportSelection) -> Optional[str]:
    if transport.is_using_bus and not string_or_empty(transport.stop_name):
        return "Please select a stop"
    return None


def _coordinate_rule(
    own: str, other: str, label: str, bounds: Tuple[float, float]
) -> Callable[[TransportSelection], Optional[str]]:
    def rule(transport: TransportSelection) -> Optional[str]:
        if not (transport.is_using_bus and transport.is_new_stop):
            return None
        value = getattr(transport, own)
        if not string_or_empty(value):
            if string_or_empty(getattr(transport, other)):
                return f"{label} is required when a coordinate pair is entered"
            return None
        try:
            parse_coordinate(value, bounds)
        except ValueError:
            return f"{label} must be a number between {bounds[0]:g} and {bounds[1]:g}"
        return None

    return rule


latitude_rule = _coordinate_rule("latitude", "longitude", "Latitude", LATITUDE_RANGE)
longitude_rule = _coordinate_rule("longitude", "latitude", "Longitude", LONGITUDE_RANGE)

TRANSPORT_RULES: Mapping[Enum, Rule] = {
    TransportField.BUS_ID: vehicle_selected,
    TransportField.STOP_NAME: stop_selected,
    TransportField.LATITUDE: latitude_rule,
    TransportField.LONGITUDE: longitude_rule,
}


# ============================================================================
# Rule sets and table
# ============================================================================


@dataclass(frozen=True)
class FlatRules:
    """Rules for fields stored directly on the draft."""

    group: RuleGroup
    rules: Mapping[Enum, Rule]

    def value_for(self, draft: Any, field: Enum) -> Any:
        return getattr(draft, field.value)


@dataclass(frozen=True)
class NestedRules:
    """Rules for fields of a nested sub-record; each rule sees one value."""

    group: RuleGroup
    rules: Mapping[Enum, Rule]

    def value_for(self, draft: Any, field: Enum) -> Any:
        return getattr(getattr(draft, self.group.value), field.value)


@dataclass(frozen=True)
class GroupRules:
    """Compound rules; each rule sees the whole sub-record of the group."""

    group: RuleGroup
    rules: Mapping[Enum, Rule]

    def value_for(self, draft: Any, field: Enum) -> Any:
        return getattr(draft, self.group.value)


RuleSet = Union[FlatRules, NestedRules, GroupRules]


class RuleTable:
    """Evaluate grouped rules against draft values.

    Parameters
    ----------
    rule_sets : Iterable[RuleSet]
        One rule set per group.
    fail_open : bool
        Treat a rule that raises as passing (True, default) or as failing
        with FAIL_CLOSED_MESSAGE (False).
    """

    def __init__(self, rule_sets: Iterable[RuleSet], fail_open: bool = True) -> None:
        self._sets: Dict[RuleGroup, RuleSet] = {}
        for rule_set in rule_sets:
            if rule_set.group in self._sets:
                raise ValueError(f"Duplicate rule set for group '{rule_set.group.value}'")
            for field in rule_set.rules:
                if not isinstance(field, rule_set.group.field_type):
                    raise ValueError(
                        f"{field!r} is not a field of group '{rule_set.group.value}'"
                    )
            self._sets[rule_set.group] = rule_set
        self.fail_open = fail_open

    @property
    def flat_groups(self) -> Tuple[RuleGroup, ...]:
        return tuple(g for g in self._sets if not g.is_nested)

    def refs(self) -> List[FieldRef]:
        """Every field that has a rule, in declaration order."""
        return [
            FieldRef(group, field)
            for group, rule_set in self._sets.items()
            for field in rule_set.rules
        ]

    def has_rule(self, ref: FieldRef) -> bool:
        rule_set = self._sets.get(ref.group)
        return rule_set is not None and ref.field in rule_set.rules

    def evaluate(self, group: RuleGroup, field: Enum, value: Any) -> Optional[str]:
        """Apply the rule for (group, field) to a value.

        Returns
        -------
        Optional[str]
            Error message, or None when the value passes or no rule exists.
        """
        rule_set = self._sets.get(group)
        if rule_set is None:
            return None
        rule = rule_set.rules.get(field)
        if rule is None:
            return None

        try:
            message = rule(value)
        except Exception:
            LOG.warning(
                "Rule for %s.%s raised; treating as %s",
                group.value,
                field.value,
                "valid" if self.fail_open else "invalid",
                exc_info=True,
            )
            return None if self.fail_open else FAIL_CLOSED_MESSAGE

        return message or None

    def check_field(self, ref: FieldRef, draft: Any) -> Optional[str]:
        rule_set = self._sets.get(ref.group)
        if rule_set is None:
            return None
        return self.evaluate(ref.group, ref.field, rule_set.value_for(draft, ref.field))

    def check(self, draft: Any, refs: Optional[Sequence[FieldRef]] = None) -> Dict[str, str]:
        """Build an error map for the given fields (all ruled fields by default)."""
        errors: Dict[str, str] = {}
        for ref in refs if refs is not None else self.refs():
            message = self.check_field(ref, draft)
            if message:
                errors[ref.path] = message
        return errors


# ============================================================================
# Student wizard
# ============================================================================


def _ref(group: RuleGroup, field: Enum) -> FieldRef:
    return FieldRef(group, field)


STEP_FIELDS: Dict[Step, Tuple[FieldRef, ...]] = {
    Step.IDENTITY: (
        _ref(RuleGroup.IDENTITY, IdentityField.DOCUMENT_NUMBER),
        _ref(RuleGroup.IDENTITY, IdentityField.FIRST_NAME),
        _ref(RuleGroup.IDENTITY, IdentityField.LAST_NAME),
        _ref(RuleGroup.IDENTITY, IdentityField.EMAIL),
    ),
    Step.PERSONAL: (
        _ref(RuleGroup.PERSONAL, PersonalField.DOB),
        _ref(RuleGroup.PERSONAL, PersonalField.GENDER),
        _ref(RuleGroup.PERSONAL, PersonalField.BLOOD_GROUP),
        _ref(RuleGroup.ADDRESS, AddressField.ADDRESS_LINE),
        _ref(RuleGroup.ADDRESS, AddressField.CITY),
        _ref(RuleGroup.ADDRESS, AddressField.STATE),
        _ref(RuleGroup.ADDRESS, AddressField.PINCODE),
    ),
    Step.CLASS_FAMILY: (
        _ref(RuleGroup.CLASS_INFO, ClassField.GRADE),
        _ref(RuleGroup.CLASS_INFO, ClassField.SECTION),
        _ref(RuleGroup.PARENT_DETAILS, GuardianField.FATHER_NAME),
        _ref(RuleGroup.PARENT_DETAILS, GuardianField.FATHER_PHONE),
        _ref(RuleGroup.PARENT_DETAILS, GuardianField.MOTHER_NAME),
        _ref(RuleGroup.PARENT_DETAILS, GuardianField.MOTHER_PHONE),
        _ref(RuleGroup.PARENT_DETAILS, GuardianField.PRIMARY_CONTACT),
    ),
    Step.TRANSPORT: (
        _ref(RuleGroup.TRANSPORT, TransportField.BUS_ID),
        _ref(RuleGroup.TRANSPORT, TransportField.STOP_NAME),
        _ref(RuleGroup.TRANSPORT, TransportField.LATITUDE),
        _ref(RuleGroup.TRANSPORT, TransportField.LONGITUDE),
    ),
}

# Steps validated unconditionally at submit; transport is checked separately
REQUIRED_STEPS: Tuple[Step, ...] = (Step.IDENTITY, Step.PERSONAL, Step.CLASS_FAMILY)


def step_of(ref: FieldRef) -> Optional[Step]:
    """Return the wizard step a field is collected on."""
    for step, refs in STEP_FIELDS.items():
        if ref in refs:
            return step
    return None


def build_student_rules(
    clock: Clock = date.today,
    min_age: Optional[int] = 3,
    max_age: Optional[int] = 22,
    fail_open: bool = True,
) -> RuleTable:
    """Build the rule table for the student enrollment wizard.

    Parameters
    ----------
    clock : Callable[[], date]
        Returns "today" for date-of-birth checks.
    min_age, max_age : Optional[int]
        Inclusive age bounds; None disables a bound.
    fail_open : bool
        Failure policy for rules that raise (see module docstring).
    """
    return RuleTable(
        [
            FlatRules(
                RuleGroup.IDENTITY,
                {
                    IdentityField.DOCUMENT_NUMBER: document_number_rule,
                    IdentityField.FIRST_NAME: name_rule("First name", min_length=2),
                    IdentityField.LAST_NAME: name_rule("Last name", min_length=1),
                    IdentityField.EMAIL: email_rule(is_required=False),
                },
            ),
            FlatRules(
                RuleGroup.PERSONAL,
                {
                    PersonalField.DOB: dob_rule(clock, min_age, max_age, noun="Student"),
                    PersonalField.GENDER: choice_rule("Gender", Gender.all_values()),
                    PersonalField.BLOOD_GROUP: choice_rule(
                        "Blood group", BloodGroup.all_values(), is_required=False
                    ),
                },
            ),
            NestedRules(
                RuleGroup.ADDRESS,
                {
                    AddressField.ADDRESS_LINE: required("Address"),
                    AddressField.CITY: required("City"),
                    AddressField.STATE: name_rule("State", is_required=False),
                    AddressField.PINCODE: pincode_rule,
                },
            ),
            NestedRules(
                RuleGroup.CLASS_INFO,
                {
                    ClassField.GRADE: required("Grade"),
                    ClassField.SECTION: section_rule,
                },
            ),
            NestedRules(
                RuleGroup.PARENT_DETAILS,
                {
                    GuardianField.FATHER_NAME: name_rule("Guardian name", min_length=2),
                    GuardianField.FATHER_PHONE: phone_rule("Father's phone"),
                    GuardianField.MOTHER_NAME: name_rule(
                        "Mother's name", min_length=2, is_required=False
                    ),
                    GuardianField.MOTHER_PHONE: phone_rule("Mother's phone"),
                    GuardianField.PRIMARY_CONTACT: phone_rule(
                        "Primary contact", is_required=True
                    ),
                },
            ),
            GroupRules(RuleGroup.TRANSPORT, TRANSPORT_RULES),
        ],
        fail_open=fail_open,
    )


# ============================================================================
# Employee registration
# ============================================================================


def build_employee_rules(
    kind: RecordKind,
    clock: Clock = date.today,
    min_age: Optional[int] = 18,
    max_age: Optional[int] = None,
    fail_open: bool = True,
) -> RuleTable:
    """Build the rule table for a single-page staff, teacher or driver form.

    Staff and teachers need an email and a designation and may enroll in
    transport; drivers need a licence number instead.

    Raises
    ------
    ValueError
        If kind is STUDENT (students use build_student_rules).
    """
    if not kind.is_employee:
        raise ValueError("Students are validated by the enrollment wizard rules")

    noun = kind.value.capitalize()
    rules: Dict[Enum, Rule] = {
        EmployeeField.DOCUMENT_NUMBER: document_number_rule,
        EmployeeField.FULL_NAME: name_rule("Full name", min_length=2),
        EmployeeField.PHONE: phone_rule("Phone", is_required=True),
        EmployeeField.DOB: dob_rule(clock, min_age, max_age, noun=noun),
        EmployeeField.BLOOD_GROUP: choice_rule(
            "Blood group", BloodGroup.all_values(), is_required=False
        ),
        EmployeeField.JOINING_DATE: optional_date_rule("Joining date"),
        EmployeeField.EMERGENCY_CONTACT: phone_rule("Emergency contact"),
    }

    rule_sets: List[RuleSet] = []
    if kind is RecordKind.DRIVER:
        rules[EmployeeField.EMAIL] = email_rule(is_required=False)
        rules[EmployeeField.LICENSE_NUMBER] = required("Licence number")
        rules[EmployeeField.LICENSE_EXPIRY_DATE] = optional_date_rule("Licence expiry date")
        rules[EmployeeField.EXPERIENCE] = non_negative_int_rule("Experience")
    else:
        rules[EmployeeField.EMAIL] = email_rule(is_required=True)
        rules[EmployeeField.DESIGNATION] = required("Designation")
        rule_sets.append(GroupRules(RuleGroup.TRANSPORT, TRANSPORT_RULES))

    rule_sets.insert(0, FlatRules(RuleGroup.EMPLOYEE, rules))
    return RuleTable(rule_sets, fail_open=fail_open)
