"""Enumerations for the enrollment workflow."""

from enum import Enum, IntEnum


class Step(IntEnum):
    """Pages of the student enrollment wizard, in navigation order."""

    IDENTITY = 1
    PERSONAL = 2
    CLASS_FAMILY = 3
    TRANSPORT = 4

    @property
    def title(self) -> str:
        return _STEP_TITLES[self]

    @classmethod
    def first(cls) -> "Step":
        return cls.IDENTITY

    @classmethod
    def last(cls) -> "Step":
        return cls.TRANSPORT


_STEP_TITLES = {
    Step.IDENTITY: "Identity",
    Step.PERSONAL: "Personal",
    Step.CLASS_FAMILY: "Class & Family",
    Step.TRANSPORT: "Transport",
}


class RecordKind(Enum):
    """Kinds of people that can be registered.

    Each kind corresponds to:
    - A remote collection (``resource``) the records are created in
    - An identifier prefix and age limits in config/parameters.yaml
    - A rule table (students use the stepped wizard, employees a single page)

    Attributes
    ----------
    STUDENT : str
        Student enrollment ('student'). Collection: /students
    STAFF : str
        Non-teaching staff ('staff'). Collection: /staff
    TEACHER : str
        Teaching staff ('teacher'). Collection: /teachers
    DRIVER : str
        Transport driver ('driver'). Collection: /drivers
    """

    STUDENT = "student"
    STAFF = "staff"
    TEACHER = "teacher"
    DRIVER = "driver"

    @property
    def resource(self) -> str:
        """Collection path segment used by the records API."""
        return _RESOURCES[self]

    @property
    def identifier_field(self) -> str:
        """Name of the identifier attribute on records of this kind."""
        return _IDENTIFIER_FIELDS[self]

    @property
    def is_employee(self) -> bool:
        return self is not RecordKind.STUDENT

    @classmethod
    def from_string(cls, value: str | None) -> "RecordKind":
        """Convert string to RecordKind.

        Parameters
        ----------
        value : str | None
            Kind name ('student', 'staff', 'teacher', 'driver'), or None for
            default (STUDENT). Case-insensitive.

        Returns
        -------
        RecordKind
            Corresponding RecordKind enum value.

        Raises
        ------
        ValueError
            If value is not a valid kind. Error message lists all options.

        Examples
        --------
        >>> RecordKind.from_string('Teacher')
        <RecordKind.TEACHER: 'teacher'>

        >>> RecordKind.from_string(None)
        <RecordKind.STUDENT: 'student'>
        """
        if value is None:
            return cls.STUDENT

        value_lower = value.strip().lower()
        for kind in cls:
            if kind.value == value_lower:
                return kind

        raise ValueError(
            f"Unknown record kind: {value}. "
            f"Valid options: {', '.join(k.value for k in cls)}"
        )

    @classmethod
    def all_values(cls) -> set[str]:
        return {kind.value for kind in cls}


_RESOURCES = {
    RecordKind.STUDENT: "students",
    RecordKind.STAFF: "staff",
    RecordKind.TEACHER: "teachers",
    RecordKind.DRIVER: "drivers",
}

_IDENTIFIER_FIELDS = {
    RecordKind.STUDENT: "student_id",
    RecordKind.STAFF: "staff_id",
    RecordKind.TEACHER: "staff_id",
    RecordKind.DRIVER: "driver_id",
}


class RuleGroup(Enum):
    """Sections of a draft record that validation rules are grouped by.

    Flat groups (IDENTITY, PERSONAL, EMPLOYEE) hold fields stored directly on
    the draft. Nested groups are stored as a sub-record whose attribute name
    is the enum value.
    """

    IDENTITY = "identity"
    PERSONAL = "personal"
    ADDRESS = "address"
    CLASS_INFO = "class_info"
    PARENT_DETAILS = "parent_details"
    TRANSPORT = "transport"
    EMPLOYEE = "employee"

    @property
    def is_nested(self) -> bool:
        return self in _NESTED_GROUPS

    @property
    def field_type(self) -> type:
        """Enum class enumerating the fields of this group."""
        return _GROUP_FIELDS[self]


class IdentityField(Enum):
    """Fields collected on the identity page."""

    DOCUMENT_NUMBER = "document_number"
    FIRST_NAME = "first_name"
    LAST_NAME = "last_name"
    EMAIL = "email"


class PersonalField(Enum):
    """Biographical fields stored directly on the student draft."""

    DOB = "dob"
    GENDER = "gender"
    BLOOD_GROUP = "blood_group"
    RELIGION = "religion"
    NATIONALITY = "nationality"
    ROLL_NUMBER = "roll_number"
    ADMISSION_NUMBER = "admission_number"
    JOINING_DATE = "joining_date"


class AddressField(Enum):
    ADDRESS_LINE = "address_line"
    CITY = "city"
    STATE = "state"
    PINCODE = "pincode"


class ClassField(Enum):
    GRADE = "grade"
    SECTION = "section"
    ACADEMIC_YEAR = "academic_year"


class GuardianField(Enum):
    FATHER_NAME = "father_name"
    FATHER_PHONE = "father_phone"
    FATHER_OCCUPATION = "father_occupation"
    MOTHER_NAME = "mother_name"
    MOTHER_PHONE = "mother_phone"
    MOTHER_OCCUPATION = "mother_occupation"
    PRIMARY_CONTACT = "primary_contact"


class TransportField(Enum):
    IS_USING_BUS = "is_using_bus"
    BUS_ID = "bus_id"
    ROUTE_ID = "route_id"
    STOP_NAME = "stop_name"
    LATITUDE = "latitude"
    LONGITUDE = "longitude"
    IS_NEW_STOP = "is_new_stop"


class EmployeeField(Enum):
    """Fields of the single-page staff, teacher and driver forms."""

    DOCUMENT_NUMBER = "document_number"
    FULL_NAME = "full_name"
    EMAIL = "email"
    PHONE = "phone"
    DOB = "dob"
    BLOOD_GROUP = "blood_group"
    DESIGNATION = "designation"
    QUALIFICATION = "qualification"
    JOINING_DATE = "joining_date"
    LICENSE_NUMBER = "license_number"
    LICENSE_EXPIRY_DATE = "license_expiry_date"
    EXPERIENCE = "experience"
    EMERGENCY_CONTACT = "emergency_contact"


_NESTED_GROUPS = {
    RuleGroup.ADDRESS,
    RuleGroup.CLASS_INFO,
    RuleGroup.PARENT_DETAILS,
    RuleGroup.TRANSPORT,
}

_GROUP_FIELDS = {
    RuleGroup.IDENTITY: IdentityField,
    RuleGroup.PERSONAL: PersonalField,
    RuleGroup.ADDRESS: AddressField,
    RuleGroup.CLASS_INFO: ClassField,
    RuleGroup.PARENT_DETAILS: GuardianField,
    RuleGroup.TRANSPORT: TransportField,
    RuleGroup.EMPLOYEE: EmployeeField,
}


class Gender(Enum):
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"

    @classmethod
    def all_values(cls) -> set[str]:
        return {g.value for g in cls}


class BloodGroup(Enum):
    A_POS = "A+"
    A_NEG = "A-"
    B_POS = "B+"
    B_NEG = "B-"
    AB_POS = "AB+"
    AB_NEG = "AB-"
    O_POS = "O+"
    O_NEG = "O-"

    @classmethod
    def all_values(cls) -> set[str]:
        return {b.value for b in cls}
