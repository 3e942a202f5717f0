"""Patient intake validation and registration payload construction."""

import re
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError

from ...constants.workflows import WorkflowType
from ...core.exceptions import ValidationError
from .phone import format_irish_mobile, validate_irish_mobile

MIN_ONLINE_AGE = 3
MAX_ONLINE_AGE = 75
BOOKING_HELPLINE = "0818 123 456"
DEFAULT_REGISTRATION_TYPE = 2

HOME_ADDRESS_TYPE = 1
CURRENT_ADDRESS_TYPE = 2

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

REQUIRED_MESSAGES: Dict[str, str] = {
    "first_name": "First name is required",
    "last_name": "Last name is required",
    "date_of_birth": "Date of birth is required",
    "gender": "Gender is required",
    "current_building": "Current location building is required",
    "current_street": "Current location street is required",
    "home_building": "Home location building is required",
    "home_street": "Home location street is required",
}


def calculate_age(date_of_birth: date, today: Optional[date] = None) -> int:
    """Age in whole years, adjusted for birthdays not yet reached this year."""
    today = today or date.today()
    age = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def age_error(date_of_birth: Optional[date], today: Optional[date] = None) -> Optional[str]:
    """Return the user-facing error for an out-of-range age, else None."""
    if date_of_birth is None:
        return "Please enter a valid date of birth."
    age = calculate_age(date_of_birth, today)
    if age < MIN_ONLINE_AGE:
        return (
            f"Patients under {MIN_ONLINE_AGE} years of age cannot book online. "
            f"Please call 📞 {BOOKING_HELPLINE}"
        )
    if age > MAX_ONLINE_AGE:
        return (
            f"Patients over {MAX_ONLINE_AGE} years of age cannot book online. "
            f"Please call 📞 {BOOKING_HELPLINE}"
        )
    return None


class PatientIntake(BaseModel):
    """Patient details as captured by the booking form."""

    model_config = ConfigDict(
        validate_default=True, str_strip_whitespace=True, coerce_numbers_to_str=True
    )

    first_name: str = ""
    last_name: str = ""
    date_of_birth: Optional[date] = None
    gender: str = ""
    phone_number: str = ""
    email: str = ""
    appointment_type: Union[int, str] = ""
    reason_comments: str = ""
    reason_for_contact: List[str] = []

    unknown_gp: bool = False
    gp: Optional[str] = None
    surgery: Optional[str] = None
    gms_number: Optional[str] = None
    gms_expiry: Optional[str] = None

    home_building: str = ""
    home_street: str = ""
    home_area: str = ""
    home_city: str = ""
    home_country: str = ""
    home_eircode: str = ""
    home_correspondence: bool = False

    current_building: str = ""
    current_street: str = ""
    current_area: str = ""
    current_city: str = ""
    current_country: str = ""
    current_eircode: str = ""
    current_correspondence: bool = False

    @field_validator(
        "first_name",
        "last_name",
        "gender",
        "current_building",
        "current_street",
        "home_building",
        "home_street",
    )
    @classmethod
    def validate_required(cls, v: str, info: ValidationInfo) -> str:
        """Reject blank mandatory fields."""
        if not v:
            raise ValueError(REQUIRED_MESSAGES[info.field_name])
        return v

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def blank_date_of_birth(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("date_of_birth")
    @classmethod
    def validate_age(cls, v: Optional[date]) -> Optional[date]:
        """Online booking is limited to patients aged 3 to 75."""
        if v is None:
            raise ValueError(REQUIRED_MESSAGES["date_of_birth"])
        error = age_error(v)
        if error:
            raise ValueError(error)
        return v

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        """Irish mobile numbers only."""
        error = validate_irish_mobile(v)
        if error:
            raise ValueError(error)
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """E-mail is optional but must look like one when given."""
        if v and not _EMAIL_PATTERN.match(v):
            raise ValueError("Please enter a valid email address")
        return v

    @field_validator("reason_for_contact", mode="before")
    @classmethod
    def split_reasons(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, (int, str)):
            return [item.strip() for item in str(v).split(",") if item.strip()]
        return [str(item) for item in v if str(item).strip()]

    @field_validator("reason_for_contact")
    @classmethod
    def validate_reason(cls, v: List[str], info: ValidationInfo) -> List[str]:
        if not v and not info.data.get("reason_comments"):
            raise ValueError("Reason for contact is required")
        return v

    @field_validator("gp", "surgery", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return str(v)

    @field_validator("gp", "surgery")
    @classmethod
    def validate_gp(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        """GP and surgery are mandatory unless the patient does not know their GP."""
        if info.data.get("unknown_gp"):
            return None
        label = "General Practitioner" if info.field_name == "gp" else "Surgery"
        if not v:
            raise ValueError(f"{label} is required")
        if not v.isdigit():
            raise ValueError(f"Please select a {label} from the list")
        return v

    @property
    def symptoms(self) -> str:
        return ",".join(self.reason_for_contact)


def _field_errors(error: PydanticValidationError) -> Dict[str, str]:
    """Flatten pydantic errors into ``{field: message}``."""
    errors: Dict[str, str] = {}
    for item in error.errors():
        field = str(item["loc"][0]) if item.get("loc") else "__root__"
        if field in errors:
            continue
        ctx = item.get("ctx") or {}
        if item["type"] == "value_error" and "error" in ctx:
            errors[field] = str(ctx["error"])
        elif field == "date_of_birth":
            errors[field] = "Please enter a valid date of birth."
        else:
            errors[field] = item["msg"]
    return errors


def validate_intake(form_data: Union[Mapping[str, Any], PatientIntake]) -> PatientIntake:
    """
    Validate raw form data.

    Args:
        form_data: Mapping of form fields, or an already-built intake

    Returns:
        Validated PatientIntake

    Raises:
        ValidationError: With every failing field, before any network call
    """
    if isinstance(form_data, PatientIntake):
        form_data = form_data.model_dump()
    try:
        return PatientIntake.model_validate(dict(form_data))
    except PydanticValidationError as e:
        raise ValidationError(field_errors=_field_errors(e)) from e


def _address(intake: PatientIntake, prefix: str, type_id: int, expiration: Optional[str]):
    return {
        "AddressTypeID": type_id,
        "AddressLine1": getattr(intake, f"{prefix}_building") or "",
        "AddressLine2": getattr(intake, f"{prefix}_street") or "",
        "AddressLine3": getattr(intake, f"{prefix}_area") or "",
        "IsCorrespondence": getattr(intake, f"{prefix}_correspondence"),
        "AddressLine4": getattr(intake, f"{prefix}_city") or "",
        "AddressLine5": getattr(intake, f"{prefix}_country") or "",
        "AddressLine6": getattr(intake, f"{prefix}_eircode") or "",
        "AddressExpiration": expiration,
    }


def current_address_expiry(now: Optional[datetime] = None) -> str:
    """The current (temporary) address expires at the end of tomorrow."""
    now = now or datetime.now()
    tomorrow = (now + timedelta(days=1)).date()
    return datetime.combine(tomorrow, time(23, 59, 59, 999000)).isoformat(timespec="milliseconds")


def build_registration_payload(
    intake: PatientIntake,
    genders: Optional[List[Dict[str, Any]]] = None,
    doctors: Optional[List[Dict[str, Any]]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Build the ``save_patient_details`` request.

    Args:
        intake: Validated intake
        genders: Gender lookup rows, used to send the name rather than the id
        doctors: Doctor lookup rows, used to resolve RegisterationType
        now: Clock override for the current-address expiry

    Returns:
        Request payload with ``PatientID`` 0 (new patient)
    """
    gender_name = intake.gender
    for row in genders or []:
        if str(row.get("Id")) == intake.gender:
            gender_name = row.get("GenderName") or intake.gender
            break

    gp_id = None if intake.unknown_gp or not intake.gp else int(intake.gp)
    surgery_id = None if intake.unknown_gp or not intake.surgery else int(intake.surgery)

    registration_type = None
    if gp_id is not None:
        registration_type = DEFAULT_REGISTRATION_TYPE
        for row in doctors or []:
            if str(row.get("GPID")) == str(gp_id):
                registration_type = row.get("RegisterationType") or DEFAULT_REGISTRATION_TYPE
                break

    return {
        "workflowtype": WorkflowType.SAVE_PATIENT_DETAILS,
        "PatientID": 0,
        "Gender": gender_name,
        "DOB": intake.date_of_birth.isoformat() if intake.date_of_birth else None,
        "Firstname": intake.first_name,
        "Lastname": intake.last_name,
        "RegisterationType": registration_type,
        "GeneralPractitionerID": gp_id,
        "Surgery": surgery_id,
        "GMSNO": intake.gms_number or None,
        "GMSExpiry": intake.gms_expiry or None,
        "PatientAddress": [
            _address(intake, "home", HOME_ADDRESS_TYPE, None),
            _address(intake, "current", CURRENT_ADDRESS_TYPE, current_address_expiry(now)),
        ],
        "ContactNumber": format_irish_mobile(intake.phone_number),
        "Email": intake.email or "",
        "Symptoms": intake.symptoms,
        "SymptomsComments": intake.reason_comments or "",
    }
