"""Payload validation: first-violation reporting, defaults and date normalization."""
from datetime import datetime, timezone

import pytest

from errors import ValidationError
from models import (
    HealthRecordCreate,
    MedicationCreate,
    MedicationReminderCreate,
    PatientCreate,
    PatientUpdate,
    SignupRequest,
    UserUpdate,
)
from validation import error_location, parse_date_input, validate_payload

PATIENT = {"firstName": "Asha", "dateOfBirth": "1984-03-12", "gender": "female"}
MEDICATION = {
    "patientId": "0123456789abcdef01234567",
    "name": "Metformin",
    "dosage": "500mg",
    "frequency": "twice daily",
    "route": "oral",
    "startDate": "2024-01-15",
}


def field_of(schema, raw):
    with pytest.raises(ValidationError) as exc_info:
        validate_payload(schema, raw)
    return exc_info.value.field


class TestDates:

    def test_calendar_date_is_utc_midnight(self):
        assert parse_date_input("2024-01-15") == datetime(2024, 1, 15, tzinfo=timezone.utc)

    @pytest.mark.parametrize("raw", [
        "2024-01-15T08:30:00Z",
        "2024-01-15T08:30:00+00:00",
        "2024-01-15T14:00:00+05:30",
        "2024-01-15T08:30:00",
    ])
    def test_timestamps_normalize_to_utc(self, raw):
        assert parse_date_input(raw) == datetime(2024, 1, 15, 8, 30, tzinfo=timezone.utc)

    @pytest.mark.parametrize("raw", ["", "yesterday", "15/01/2024", "2024-02-30", "2024", 1705276800, None])
    def test_rejects_unreadable_dates(self, raw):
        with pytest.raises(ValueError):
            parse_date_input(raw)

    def test_both_forms_land_on_the_same_representation(self):
        a = validate_payload(PatientCreate, {**PATIENT, "dateOfBirth": "1984-03-12"})
        b = validate_payload(PatientCreate, {**PATIENT, "dateOfBirth": "1984-03-12T00:00:00Z"})
        assert a.date_of_birth == b.date_of_birth
        assert a.date_of_birth.tzinfo is not None


class TestValidatePayload:

    def test_missing_date_of_birth_names_the_field(self):
        raw = {k: v for k, v in PATIENT.items() if k != "dateOfBirth"}
        assert field_of(PatientCreate, raw) == "dateOfBirth"

    def test_malformed_date_names_the_field(self):
        assert field_of(PatientCreate, {**PATIENT, "dateOfBirth": "not a date"}) == "dateOfBirth"

    def test_reports_only_the_first_violation(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_payload(PatientCreate, {"gender": 5})
        error = exc_info.value
        assert error.field == "firstName"
        assert error.to_dict() == {
            "error": error.message,
            "code": "VALIDATION_ERROR",
            "field": "firstName",
        }

    def test_patient_defaults_are_filled(self):
        doc = validate_payload(PatientCreate, PATIENT).to_document()
        assert doc["middleName"] == ""
        assert doc["bloodGroup"] == ""
        assert doc["emails"] == []
        assert doc["hospitalIdentifiers"] == []
        assert doc["preferences"] == {}
        assert "ownerUserId" not in doc

    def test_unknown_fields_are_dropped(self):
        doc = validate_payload(PatientCreate, {**PATIENT, "ownerUserId": "0123456789abcdef01234567"}).to_document()
        assert "ownerUserId" not in doc

    def test_medication_defaults(self):
        doc = validate_payload(MedicationCreate, MEDICATION).to_document()
        assert doc["isActive"] is True
        assert doc["endDate"] is None
        assert doc["tags"] == []
        assert doc["instructions"] == ""
        assert doc["startDate"] == datetime(2024, 1, 15, tzinfo=timezone.utc)

    @pytest.mark.parametrize("raw, field", [
        ({**MEDICATION, "isActive": "true"}, "isActive"),
        ({**MEDICATION, "isActive": 1}, "isActive"),
        ({**MEDICATION, "name": 42}, "name"),
        ({**MEDICATION, "name": ""}, "name"),
        ({**MEDICATION, "tags": "diabetes"}, "tags"),
        ({**PATIENT, "emails": ["not-an-email"]}, "emails.0"),
        ({**PATIENT, "hospitalIdentifiers": [{"systemName": "Apollo", "identifierType": "MRN"}]},
         "hospitalIdentifiers.0.value"),
    ])
    def test_wrong_types_are_not_coerced(self, raw, field):
        schema = PatientCreate if "gender" in raw else MedicationCreate
        assert field_of(schema, raw) == field

    def test_record_type_must_be_known(self):
        raw = {
            "patientId": "0123456789abcdef01234567",
            "recordType": "openEHR-EHR-OBSERVATION.made_up.v1",
            "data": {},
            "source": "Lab",
        }
        assert field_of(HealthRecordCreate, raw) == "recordType"
        raw["recordType"] = "openEHR-EHR-OBSERVATION.lab_test.v1"
        assert validate_payload(HealthRecordCreate, raw).to_document()["tags"] == []

    def test_days_of_week_range(self):
        raw = {"title": "Morning", "scheduledTime": "2024-01-15T08:00:00Z", "frequency": "daily"}
        assert validate_payload(MedicationReminderCreate, {**raw, "daysOfWeek": [0, 6]}).days_of_week == [0, 6]
        assert field_of(MedicationReminderCreate, {**raw, "daysOfWeek": [7]}) == "daysOfWeek.0"

    def test_signup_requires_a_real_email_and_password_length(self):
        assert field_of(SignupRequest, {"firstName": "A", "email": "nope", "password": "longenough"}) == "email"
        assert field_of(SignupRequest, {"firstName": "A", "email": "a@healthnest.io", "password": "short"}) == "password"

    @pytest.mark.parametrize("raw", [None, [], "text", 3])
    def test_body_must_be_an_object(self, raw):
        assert field_of(PatientCreate, raw) == "body"


class TestUpdateChanges:

    def test_only_supplied_fields(self):
        assert validate_payload(PatientUpdate, {"gender": "male"}).changes() == {"gender": "male"}

    def test_empty_update_has_no_changes(self):
        assert validate_payload(PatientUpdate, {}).changes() == {}

    def test_false_is_a_change(self):
        assert validate_payload(UserUpdate, {"onboardingCompleted": False}).changes() == {"onboardingCompleted": False}

    def test_update_dates_are_normalized(self):
        changes = validate_payload(PatientUpdate, {"dateOfBirth": "1990-05-01"}).changes()
        assert changes == {"dateOfBirth": datetime(1990, 5, 1, tzinfo=timezone.utc)}

    def test_update_rejects_empty_email_list_for_users(self):
        assert field_of(UserUpdate, {"emails": []}) == "emails"


@pytest.mark.parametrize("loc, expected", [
    (("body", "dateOfBirth"), "dateOfBirth"),
    (("query", "metric"), "metric"),
    (("hospitalIdentifiers", 0, "value"), "hospitalIdentifiers.0.value"),
    (("body",), "body"),
    ((), "body"),
])
def test_error_location(loc, expected):
    assert error_location(loc) == expected
