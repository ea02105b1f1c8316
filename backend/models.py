"""Request schemas, one create and one update variant per entity.

Field names are snake_case in Python and camelCase on the wire and in the
store. Create schemas fill every optional field with its default so stored
documents are self-describing; update schemas leave unset fields as None.
"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, get_args

from pydantic import BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, StrictBool, StrictInt, StringConstraints
from pydantic.alias_generators import to_camel

from validation import parse_date_input

DEFAULT_TAGS = (
    "prescription",
    "lab_report",
    "scan_result",
    "discharge_summary",
    "consultation",
    "medication",
    "symptom",
    "vital_signs",
)

Text = Annotated[str, StringConstraints(strict=True)]
RequiredText = Annotated[str, StringConstraints(strict=True, min_length=1)]
Password = Annotated[str, StringConstraints(strict=True, min_length=8)]
DateInput = Annotated[datetime, BeforeValidator(parse_date_input)]
DayOfWeek = Annotated[StrictInt, Field(ge=0, le=6)]
RecordType = Literal[
    "openEHR-EHR-OBSERVATION.lab_test.v1",
    "openEHR-EHR-OBSERVATION.vital_signs.v2",
    "openEHR-EHR-EVALUATION.problem_diagnosis.v1",
    "openEHR-EHR-INSTRUCTION.medication_order.v1",
    "openEHR-EHR-ACTION.medication.v1",
    "openEHR-EHR-EVALUATION.clinical_synopsis.v1",
]
RECORD_TYPES = get_args(RecordType)
EmailList = Annotated[List[EmailStr], Field(min_length=1)]


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)


class UpdateModel(ApiModel):
    def changes(self) -> dict:
        """Only the fields the client actually supplied with a value."""
        return {k: v for k, v in self.model_dump(by_alias=True).items() if v is not None}


class MobileNumber(ApiModel):
    country_code: Text
    number: RequiredText


class HospitalIdentifier(ApiModel):
    system_name: RequiredText
    identifier_type: RequiredText
    value: RequiredText


# ==================== USERS ====================

class SignupRequest(ApiModel):
    first_name: RequiredText
    last_name: Text = ""
    email: EmailStr
    password: Password


class LoginRequest(ApiModel):
    email: RequiredText
    password: RequiredText


class UserUpdate(UpdateModel):
    first_name: Optional[RequiredText] = None
    middle_name: Optional[Text] = None
    last_name: Optional[Text] = None
    title: Optional[Text] = None
    suffix: Optional[Text] = None
    emails: Optional[EmailList] = None
    mobile_numbers: Optional[List[MobileNumber]] = None
    preferences: Optional[Dict[str, Any]] = None
    onboarding_completed: Optional[StrictBool] = None


# ==================== PATIENTS ====================

class PatientCreate(ApiModel):
    first_name: RequiredText
    middle_name: Text = ""
    last_name: Text = ""
    title: Text = ""
    suffix: Text = ""
    emails: List[EmailStr] = []
    date_of_birth: DateInput
    gender: RequiredText
    abha_number: Text = ""
    blood_group: Text = ""
    emergency_contacts: List[Text] = []
    preferences: Dict[str, Any] = {}
    hospital_identifiers: List[HospitalIdentifier] = []
    mobile_numbers: List[MobileNumber] = []


class PatientUpdate(UpdateModel):
    first_name: Optional[RequiredText] = None
    middle_name: Optional[Text] = None
    last_name: Optional[Text] = None
    title: Optional[Text] = None
    suffix: Optional[Text] = None
    emails: Optional[List[EmailStr]] = None
    date_of_birth: Optional[DateInput] = None
    gender: Optional[RequiredText] = None
    abha_number: Optional[Text] = None
    blood_group: Optional[Text] = None
    emergency_contacts: Optional[List[Text]] = None
    preferences: Optional[Dict[str, Any]] = None
    hospital_identifiers: Optional[List[HospitalIdentifier]] = None
    mobile_numbers: Optional[List[MobileNumber]] = None


# ==================== HEALTH RECORDS ====================

class HealthRecordCreate(ApiModel):
    patient_id: RequiredText
    record_type: RecordType
    data: Dict[str, Any]
    tags: List[Text] = []
    source: RequiredText
    document_path: Text = ""
    hospital_system_name: Text = ""
    hospital_identifier_type: Text = ""
    hospital_identifier_value: Text = ""


class HealthRecordUpdate(UpdateModel):
    record_type: Optional[RecordType] = None
    data: Optional[Dict[str, Any]] = None
    tags: Optional[List[Text]] = None
    source: Optional[RequiredText] = None
    document_path: Optional[Text] = None
    hospital_system_name: Optional[Text] = None
    hospital_identifier_type: Optional[Text] = None
    hospital_identifier_value: Optional[Text] = None


# ==================== MEDICATIONS ====================

class MedicationCreate(ApiModel):
    patient_id: RequiredText
    name: RequiredText
    dosage: RequiredText
    frequency: RequiredText
    route: RequiredText
    start_date: DateInput
    end_date: Optional[DateInput] = None
    instructions: Text = ""
    prescribed_by: Text = ""
    source: Text = ""
    is_active: StrictBool = True
    tags: List[Text] = []


class MedicationUpdate(UpdateModel):
    name: Optional[RequiredText] = None
    dosage: Optional[RequiredText] = None
    frequency: Optional[RequiredText] = None
    route: Optional[RequiredText] = None
    start_date: Optional[DateInput] = None
    end_date: Optional[DateInput] = None
    instructions: Optional[Text] = None
    prescribed_by: Optional[Text] = None
    source: Optional[Text] = None
    is_active: Optional[StrictBool] = None
    tags: Optional[List[Text]] = None


class MedicationDoseCreate(ApiModel):
    scheduled_time: DateInput
    taken_time: Optional[DateInput] = None
    is_taken: StrictBool = False
    notes: Text = ""


class MedicationDoseUpdate(UpdateModel):
    scheduled_time: Optional[DateInput] = None
    taken_time: Optional[DateInput] = None
    is_taken: Optional[StrictBool] = None
    notes: Optional[Text] = None


class MedicationReminderCreate(ApiModel):
    title: RequiredText
    message: Text = ""
    scheduled_time: DateInput
    is_enabled: StrictBool = True
    frequency: RequiredText
    days_of_week: List[DayOfWeek] = []


class MedicationReminderUpdate(UpdateModel):
    title: Optional[RequiredText] = None
    message: Optional[Text] = None
    scheduled_time: Optional[DateInput] = None
    is_enabled: Optional[StrictBool] = None
    frequency: Optional[RequiredText] = None
    days_of_week: Optional[List[DayOfWeek]] = None
