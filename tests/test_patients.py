"""Tests for the patient record models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from viewray.patients import Diagnosis, Patient, PatientList, PatientUpdate

SUMMARY = {
    "uri": "public:patients/0_1930886/root",
    "id": 1930886,
    "mrn": "MRN-7",
    "date_of_birth": "1961-04-02",
    "first_name": "Ada",
    "middle_name": "",
    "last_name": "Lovelace",
    "sex": "F",
    "fractions_total": 5,
    "fractions_completed": 2,
    "weight_kg": 61,
    "registration_time": 1600000000,
    "ready_for_treatment": True,
    "extra_field": "ignored",
}

DIAGNOSES = [
    {
        "type": "Diagnosis",
        "label": "C61",
        "description": "Prostate",
        "prescriptions": [
            {
                "type": "Prescription",
                "label": "Rx1",
                "description": "SBRT",
                "num_fractions": 5,
                "plans": [{"type": "Plan", "label": "Plan A"}, {"type": "Plan", "label": "Plan B"}],
            }
        ],
    }
]


def test_patient_summary_is_parsed() -> None:
    patient = Patient.model_validate(SUMMARY)

    assert patient.id == "1930886"
    assert patient.display_name == "Ada Lovelace"
    assert patient.diagnoses == ()


def test_with_diagnoses_returns_refined_copy() -> None:
    patient = Patient.model_validate(SUMMARY)
    update = PatientUpdate.model_validate({"type": "Patient", "diagnoses": DIAGNOSES})

    refined = patient.with_diagnoses(update.diagnoses)

    assert patient.diagnoses == ()
    assert refined.diagnoses[0].prescriptions[0].plans[1].label == "Plan B"
    assert refined.uri == patient.uri


def test_describe_lists_patient_fields() -> None:
    patient = Patient.model_validate(SUMMARY).with_diagnoses(
        tuple(Diagnosis.model_validate(item) for item in DIAGNOSES)
    )

    text = patient.describe()

    assert "Patient ID: 1930886" in text
    assert "Sex: Female" in text
    assert "Ready for treatment: True" in text
    assert "Label: C61, Description: Prostate" in text
    assert "Num Fractions: 5, Plans:[Plan A Plan B]" in text


def test_missing_fields_are_shown_as_not_available() -> None:
    text = Patient(uri="public:patients/1").describe()

    assert "MRN: N/A" in text
    assert "Sex: N/A" in text


def test_type_tags_are_checked() -> None:
    with pytest.raises(ValidationError):
        Diagnosis.model_validate({"type": "Plan", "label": "x"})
    with pytest.raises(ValidationError):
        PatientList.model_validate({"type": "PatientList"})
