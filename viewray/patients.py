"""Patient records as published by the ViewRay subscription API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict

PATIENT_LIST_TOPIC = "public:patients"


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", coerce_numbers_to_str=True)


class Plan(_Record):
    """Treatment plan attached to a prescription."""

    type: Literal["Plan"] = "Plan"
    label: str = ""


class Prescription(_Record):
    """Prescription attached to a diagnosis."""

    type: Literal["Prescription"] = "Prescription"
    description: str = ""
    label: str = ""
    num_fractions: int | None = None
    plans: tuple[Plan, ...] = ()

    def describe(self) -> str:
        plans = " ".join(plan.label for plan in self.plans)
        return (
            f"Description: {self.description}, Label: {self.label}, "
            f"Num Fractions: {_show(self.num_fractions)}, Plans:[{plans}]"
        )


class Diagnosis(_Record):
    """Diagnosis with its prescriptions."""

    type: Literal["Diagnosis"] = "Diagnosis"
    description: str = ""
    label: str = ""
    prescriptions: tuple[Prescription, ...] = ()

    def describe(self) -> str:
        prescriptions = "\n".join(item.describe() for item in self.prescriptions)
        return f"Label: {self.label}, Description: {self.description}, Prescriptions:[{prescriptions}]"


class Patient(_Record):
    """A patient summary, optionally refined with its diagnoses."""

    uri: str
    id: str | None = None
    mrn: str | None = None
    date_of_birth: str | None = None
    first_name: str | None = None
    middle_name: str | None = None
    last_name: str | None = None
    sex: Literal["M", "F"] | None = None
    fractions_total: int | None = None
    fractions_completed: int | None = None
    weight_kg: float | None = None
    registration_time: int | None = None
    ready_for_treatment: bool | None = None
    diagnoses: tuple[Diagnosis, ...] = ()

    def with_diagnoses(self, diagnoses: tuple[Diagnosis, ...]) -> Patient:
        """Return a copy carrying the given diagnoses."""

        return self.model_copy(update={"diagnoses": tuple(diagnoses)})

    @property
    def display_name(self) -> str:
        parts = (self.first_name, self.middle_name, self.last_name)
        return " ".join(part for part in parts if part) or self.uri

    def describe(self) -> str:
        """Multi-line listing used by the command line output."""

        sex = {"M": "Male", "F": "Female"}.get(self.sex or "", "N/A")
        ready = "N/A" if self.ready_for_treatment is None else str(self.ready_for_treatment)
        lines = [
            f"Patient ID: {_show(self.id)}",
            f"MRN: {_show(self.mrn)}",
            f"Date of birth: {_show(self.date_of_birth)}",
            f"First Name: {_show(self.first_name)}",
            f"Middle Name: {_show(self.middle_name)}",
            f"Last Name: {_show(self.last_name)}",
            f"Sex: {sex}",
            f"Fractions Total: {_show(self.fractions_total)}",
            f"Fractions Completed: {_show(self.fractions_completed)}",
            f"Weight: {_show(self.weight_kg)}",
            f"Ready for treatment: {ready}",
            f"Registration Time: {_show(self.registration_time)}",
            "Diagnoses:[",
        ]
        lines.extend(diagnosis.describe() for diagnosis in self.diagnoses)
        lines.append("]")
        return "\n".join(lines)


class PatientList(_Record):
    """Payload published on the patient list topic."""

    type: Literal["PatientList"]
    value: tuple[Patient, ...]


class PatientUpdate(_Record):
    """Payload published on a single patient's topic."""

    type: Literal["Patient"]
    diagnoses: tuple[Diagnosis, ...] = ()


def _show(value: object) -> str:
    return "N/A" if value is None else str(value)


__all__ = [
    "Diagnosis",
    "PATIENT_LIST_TOPIC",
    "Patient",
    "PatientList",
    "PatientUpdate",
    "Plan",
    "Prescription",
]
