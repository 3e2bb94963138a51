"""
Tests for SDMS payload models and their field-name quirks.
"""

from datetime import datetime

from elby_dashboard.integrations.sdms.records import (
    SDMSStudentRecord, SDMSStaffRecord, SDMSSchoolRecord, parse_remote_date
)


class TestSDMSRecords:

    def test_student_misspelled_fields(self):
        record = SDMSStudentRecord.model_validate({
            "studentNumber": "STU001",
            "currentAcadmicYear": "2025",
            "parentGardianName": "Jane",
            "emergenceContactNumber": "0788000000",
            "classGroupId": 42,
        })

        assert record.academic_year == "2025"
        assert record.parent_guardian_name == "Jane"
        assert record.emergency_contact_number == "0788000000"
        assert record.class_group_id == "42"

    def test_correct_spelling_takes_precedence(self):
        record = SDMSStudentRecord.model_validate({
            "parentGuardianName": "Right",
            "parentGardianName": "Wrong",
        })

        assert record.parent_guardian_name == "Right"

    def test_gender_upper_cased(self):
        assert SDMSStudentRecord.model_validate({"gender": " m "}).gender == "M"
        assert SDMSStaffRecord.model_validate({"gender": ""}).gender is None

    def test_unknown_fields_are_ignored(self):
        record = SDMSStaffRecord.model_validate({"staffNumber": "T1", "shoeSize": 44})
        assert record.staff_number == "T1"
        assert record.specialities == []

    def test_staff_specialities(self):
        record = SDMSStaffRecord.model_validate({
            "staffNumber": "T1",
            "specialities": [
                {"level": "TVET", "combination": "Software Development", "subject": "Python",
                 "subjectCode": "SWD301", "combinationCode": "541"},
            ],
        })

        speciality = record.specialities[0]
        assert speciality.level_name == "TVET"
        assert speciality.subject_name == "Python"
        assert speciality.subject_code == "SWD301"

    def test_inactive_school(self):
        record = SDMSSchoolRecord.model_validate({"schoolCode": "SCH01", "isActive": "INACTIVE"})
        assert record.active is False
        assert record.levels == []


class TestParseRemoteDate:

    def test_iso_with_zulu(self):
        assert parse_remote_date("2024-09-01T08:30:00Z") == datetime(2024, 9, 1, 8, 30)

    def test_offset_converted_to_utc(self):
        assert parse_remote_date("2024-09-01T10:30:00+02:00") == datetime(2024, 9, 1, 8, 30)

    def test_day_first_format(self):
        assert parse_remote_date("15/01/2023") == datetime(2023, 1, 15)

    def test_garbage_and_empty(self):
        assert parse_remote_date("not a date") is None
        assert parse_remote_date("") is None
        assert parse_remote_date(None) is None
