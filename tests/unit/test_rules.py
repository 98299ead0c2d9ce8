"""Unit tests for rules module - rule functions, rule table and table builders.

Tests cover:
- Age calculation and date-of-birth boundaries
- Individual field rules (names, phones, postal code, section, ...)
- Compound transport rules
- RuleTable evaluation, including the fail-open policy
- Student and employee rule tables

Real-world significance:
- A student who turns 3 today must be accepted; one who turns 3 tomorrow
  must not
- A broken rule must never block a clerk from saving a record unless the
  school opted into fail-closed validation
"""

from __future__ import annotations

from datetime import date

import pytest

from enrollment import rules
from enrollment.data_models import (
    Address,
    ClassInfo,
    FieldRef,
    ParentDetails,
    StudentDraft,
    TransportSelection,
)
from enrollment.enums import (
    EmployeeField,
    IdentityField,
    PersonalField,
    RecordKind,
    RuleGroup,
    Step,
)

TODAY = date(2026, 10, 18)


def _clock() -> date:
    return TODAY


@pytest.mark.unit
class TestCalculateAge:
    """Unit tests for calculate_age."""

    def test_birthday_today(self) -> None:
        assert rules.calculate_age(date(2023, 10, 18), TODAY) == 3

    def test_birthday_tomorrow(self) -> None:
        assert rules.calculate_age(date(2023, 10, 19), TODAY) == 2

    def test_earlier_month(self) -> None:
        assert rules.calculate_age(date(2016, 4, 2), TODAY) == 10


@pytest.mark.unit
class TestDobRule:
    """Unit tests for dob_rule with student bounds."""

    rule = staticmethod(rules.dob_rule(_clock, min_age=3, max_age=22))

    def test_lower_boundary_inclusive(self) -> None:
        assert self.rule("2023-10-18") is None

    def test_one_day_short(self) -> None:
        """Verify the minimum age is checked by calendar date.

        Real-world significance:
        - Admissions cut-offs are strict; a day short is too young
        """
        assert self.rule("2023-10-19") == (
            "Student must be at least 3 years old (current age: 2)"
        )

    def test_future_date(self) -> None:
        assert self.rule("2026-10-19") == "Date of birth cannot be in the future"

    def test_upper_boundary(self) -> None:
        assert self.rule("2004-01-01") is None
        assert "at most 22" in self.rule("2003-10-17")

    def test_required_and_format(self) -> None:
        assert self.rule("") == "Date of birth is required"
        assert self.rule("18/10/2016") == "Enter a valid date (YYYY-MM-DD)"

    @pytest.mark.parametrize("value", ["2016-04-02xyz", "2016-04-02 not a date"])
    def test_trailing_text_rejected(self, value: str) -> None:
        """Verify a valid date followed by junk is not accepted.

        Real-world significance:
        - The stored date of birth must be exactly what the rule checked
        """
        assert self.rule(value) == "Enter a valid date (YYYY-MM-DD)"

    def test_optional_date_rule(self) -> None:
        rule = rules.optional_date_rule("Licence expiry date")
        assert rule("") is None
        assert rule("2030-01-19") is None
        assert rule("2030-01-19 maybe") == "Licence expiry date must be a valid date (YYYY-MM-DD)"

    def test_no_upper_bound(self) -> None:
        rule = rules.dob_rule(_clock, min_age=18, noun="Driver")
        assert rule("1950-01-01") is None
        assert rule("2010-01-01").startswith("Driver must be at least 18")


@pytest.mark.unit
class TestFieldRules:
    """Unit tests for the individual rule functions."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("", "Identity document number is required"),
            ("1234-5678-901", "Identity document number must be exactly 12 digits"),
            ("1234-5678-9012", None),
            ("1234 5678 9012", None),
        ],
    )
    def test_document_number(self, value: str, expected) -> None:
        assert rules.document_number_rule(value) == expected

    def test_name_rule(self) -> None:
        rule = rules.name_rule("First name", min_length=2)
        assert rule("Asha") is None
        assert rule("A") == "First name must be at least 2 characters"
        assert rule("Asha1") == "First name may contain only letters and spaces"
        assert rule("  ") == "First name is required"

    def test_optional_name_rule(self) -> None:
        rule = rules.name_rule("State", is_required=False)
        assert rule("") is None
        assert rule("Tamil Nadu") is None
        assert rule("K4") is not None

    @pytest.mark.parametrize("value", ["7890123456", "6000000000", "9999999999"])
    def test_phone_valid(self, value: str) -> None:
        assert rules.phone_rule("Phone", is_required=True)(value) is None

    @pytest.mark.parametrize(
        "value", ["5890123456", "789012345", "78901234567", "78901-23456", "७८९०१२३४५६"]
    )
    def test_phone_invalid(self, value: str) -> None:
        assert rules.phone_rule("Phone")(value) == "Phone must be 10 digits starting with 6-9"

    def test_optional_phone_may_be_blank_but_not_malformed(self) -> None:
        """Verify optional secondary phones are still checked when given.

        Real-world significance:
        - A mother's phone is optional, but a 9-digit one is a typo
        """
        rule = rules.phone_rule("Mother's phone")
        assert rule("") is None
        assert rule("12345") is not None

    def test_email(self) -> None:
        assert rules.email_rule()("") is None
        assert rules.email_rule(is_required=True)("") == "Email is required"
        assert rules.email_rule()("asha@example") == "Invalid email address"
        assert rules.email_rule()("asha@example.org") is None

    def test_pincode(self) -> None:
        assert rules.pincode_rule("560001") is None
        assert rules.pincode_rule("56001") == "Postal code must be exactly 6 digits"
        assert rules.pincode_rule("") == "Postal code is required"
        assert rules.pincode_rule("५६०००१") == "Postal code must be exactly 6 digits"

    def test_section(self) -> None:
        assert rules.section_rule("A") is None
        assert rules.section_rule("AB") == "Section must be a single character"

    def test_choice(self) -> None:
        rule = rules.choice_rule("Blood group", ["A+", "O-"], is_required=False)
        assert rule("") is None
        assert rule("O-") is None
        assert rule("C+") == "Blood group must be one of: A+, O-"

    def test_non_negative_int(self) -> None:
        rule = rules.non_negative_int_rule("Experience")
        assert rule("") is None
        assert rule("12") is None
        assert rule("-1") is not None
        assert rule("two") is not None
        assert rule("²") is not None
        assert rule("१२") is not None


@pytest.mark.unit
class TestTransportRules:
    """Unit tests for the compound transport rules."""

    def test_disabled_transport_never_fails(self) -> None:
        transport = TransportSelection(is_using_bus=False, latitude="999")
        for rule in rules.TRANSPORT_RULES.values():
            assert rule(transport) is None

    def test_enabled_requires_vehicle_and_stop(self) -> None:
        transport = TransportSelection(is_using_bus=True)
        assert rules.vehicle_selected(transport) == "Please select a bus"
        assert rules.stop_selected(transport) == "Please select a stop"

    def test_new_stop_coordinates_optional_as_pair(self) -> None:
        transport = TransportSelection(
            is_using_bus=True, bus_id="bus-2", stop_name="Temple Road", is_new_stop=True
        )
        assert rules.latitude_rule(transport) is None
        assert rules.longitude_rule(transport) is None

    def test_half_a_coordinate_pair(self) -> None:
        transport = TransportSelection(
            is_using_bus=True, stop_name="Temple Road", is_new_stop=True, latitude="12.9"
        )
        assert rules.latitude_rule(transport) is None
        assert rules.longitude_rule(transport) == (
            "Longitude is required when a coordinate pair is entered"
        )

    def test_out_of_range(self) -> None:
        transport = TransportSelection(
            is_using_bus=True, is_new_stop=True, latitude="91", longitude="77.5"
        )
        assert rules.latitude_rule(transport) == "Latitude must be a number between -90 and 90"

    def test_known_stop_coordinates_not_checked(self) -> None:
        transport = TransportSelection(is_using_bus=True, is_new_stop=False, latitude="abc")
        assert rules.latitude_rule(transport) is None


@pytest.mark.unit
class TestRuleTable:
    """Unit tests for RuleTable."""

    @staticmethod
    def _raising(value) -> None:
        raise RuntimeError("boom")

    def _table(self, fail_open: bool) -> rules.RuleTable:
        return rules.RuleTable(
            [
                rules.FlatRules(
                    RuleGroup.IDENTITY,
                    {
                        IdentityField.FIRST_NAME: self._raising,
                        IdentityField.LAST_NAME: rules.required("Last name"),
                    },
                )
            ],
            fail_open=fail_open,
        )

    def test_fail_open_treats_exception_as_valid(self, caplog) -> None:
        table = self._table(fail_open=True)

        assert table.evaluate(RuleGroup.IDENTITY, IdentityField.FIRST_NAME, "x") is None
        assert "raised" in caplog.text

    def test_fail_closed_reports_message(self) -> None:
        table = self._table(fail_open=False)

        message = table.evaluate(RuleGroup.IDENTITY, IdentityField.FIRST_NAME, "x")

        assert message == rules.FAIL_CLOSED_MESSAGE

    def test_field_without_rule_passes(self) -> None:
        table = self._table(fail_open=True)
        assert table.evaluate(RuleGroup.IDENTITY, IdentityField.EMAIL, "") is None
        assert table.evaluate(RuleGroup.ADDRESS, None, "") is None

    def test_check_builds_error_map(self) -> None:
        table = self._table(fail_open=True)
        assert table.check(StudentDraft()) == {"last_name": "Last name is required"}

    @pytest.mark.parametrize(
        "draft",
        [
            StudentDraft(),
            StudentDraft(
                document_number="1234-5678-9012",
                first_name="Asha",
                last_name="Rao",
                dob="2016-04-02",
                address=Address(address_line="12 MG Road", city="Bengaluru", pincode="560001"),
                class_info=ClassInfo(grade="5", section="A"),
                parent_details=ParentDetails(father_name="Ravi Rao", primary_contact="7890123456"),
                transport=TransportSelection(
                    is_using_bus=True, bus_id="bus-1", route_id="route-1", stop_name="Main Gate"
                ),
            ),
            StudentDraft(
                document_number="1234",
                first_name="A",
                dob="2016-04-02xyz",
                address=Address(pincode="५६०००१"),
                class_info=ClassInfo(section="AB"),
                parent_details=ParentDetails(primary_contact="5890123456", mother_phone="12"),
                transport=TransportSelection(
                    is_using_bus=True, stop_name="Temple Road", is_new_stop=True, latitude="91"
                ),
            ),
        ],
        ids=["empty", "valid", "invalid"],
    )
    def test_student_rules_are_idempotent(self, draft: StudentDraft) -> None:
        """Verify every rule gives the same answer when applied twice.

        Real-world significance:
        - Blur, step advance and submit re-run the same rules on the same
          draft; a clerk must never see an error appear or vanish on re-check
        """
        table = rules.build_student_rules(clock=_clock)

        for ref in table.refs():
            first = table.check_field(ref, draft)
            second = table.check_field(ref, draft)
            assert first == second, ref.path

        assert table.check(draft) == table.check(draft)

    def test_duplicate_group_rejected(self) -> None:
        with pytest.raises(ValueError, match="Duplicate"):
            rules.RuleTable(
                [rules.FlatRules(RuleGroup.IDENTITY, {}), rules.FlatRules(RuleGroup.IDENTITY, {})]
            )

    def test_foreign_field_rejected(self) -> None:
        with pytest.raises(ValueError, match="not a field of group"):
            rules.RuleTable(
                [rules.FlatRules(RuleGroup.IDENTITY, {PersonalField.DOB: rules.required("x")})]
            )


@pytest.mark.unit
class TestStudentRules:
    """Unit tests for build_student_rules and the step layout."""

    def test_empty_draft_errors_by_step(self) -> None:
        table = rules.build_student_rules(clock=_clock)
        draft = StudentDraft()

        assert set(table.check(draft, rules.STEP_FIELDS[Step.IDENTITY])) == {
            "document_number",
            "first_name",
            "last_name",
        }
        assert set(table.check(draft, rules.STEP_FIELDS[Step.PERSONAL])) == {
            "dob",
            "address.address_line",
            "address.city",
            "address.pincode",
        }
        assert set(table.check(draft, rules.STEP_FIELDS[Step.CLASS_FAMILY])) == {
            "class_info.grade",
            "class_info.section",
            "parent_details.father_name",
            "parent_details.primary_contact",
        }
        assert table.check(draft, rules.STEP_FIELDS[Step.TRANSPORT]) == {}

    def test_transport_excluded_from_required_steps(self) -> None:
        assert Step.TRANSPORT not in rules.REQUIRED_STEPS

    def test_step_of(self) -> None:
        ref = FieldRef.parse("address.pincode", (RuleGroup.IDENTITY, RuleGroup.PERSONAL))
        assert rules.step_of(ref) is Step.PERSONAL
        assert rules.step_of(FieldRef(RuleGroup.PERSONAL, PersonalField.RELIGION)) is None


@pytest.mark.unit
class TestEmployeeRules:
    """Unit tests for build_employee_rules."""

    def test_student_kind_rejected(self) -> None:
        with pytest.raises(ValueError):
            rules.build_employee_rules(RecordKind.STUDENT)

    def test_teacher_requires_email_and_designation(self) -> None:
        table = rules.build_employee_rules(RecordKind.TEACHER, clock=_clock)
        ref_email = FieldRef(RuleGroup.EMPLOYEE, EmployeeField.EMAIL)
        ref_designation = FieldRef(RuleGroup.EMPLOYEE, EmployeeField.DESIGNATION)

        assert table.has_rule(ref_email)
        assert table.has_rule(ref_designation)
        assert RuleGroup.TRANSPORT in {ref.group for ref in table.refs()}

    def test_driver_requires_licence_not_designation(self) -> None:
        table = rules.build_employee_rules(RecordKind.DRIVER, clock=_clock)

        assert table.has_rule(FieldRef(RuleGroup.EMPLOYEE, EmployeeField.LICENSE_NUMBER))
        assert not table.has_rule(FieldRef(RuleGroup.EMPLOYEE, EmployeeField.DESIGNATION))
        assert RuleGroup.TRANSPORT not in {ref.group for ref in table.refs()}
        assert table.flat_groups == (RuleGroup.EMPLOYEE,)
