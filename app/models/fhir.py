"""Typed FHIR R4 resource variants used by the search service.

Each resource kind the search touches (Patient, Condition, Encounter,
Practitioner) gets its own model carrying only the fields we read. Raw JSON
from the FHIR server goes through ``parse_resource`` / ``Bundle.from_json``
exactly once; downstream code only sees these models.
"""

import logging
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


class HumanName(BaseModel):
    given: list[str] = []
    family: str | None = None
    text: str | None = None


class Identifier(BaseModel):
    system: str | None = None
    value: str | None = None


class Coding(BaseModel):
    system: str | None = None
    code: str | None = None
    display: str | None = None


class CodeableConcept(BaseModel):
    text: str | None = None
    coding: list[Coding] = []


class Reference(BaseModel):
    reference: str | None = None
    display: str | None = None

    @property
    def reference_id(self) -> str | None:
        """Id part of a ``<ResourceType>/<id>`` reference, e.g. ``Patient/123`` -> ``123``."""
        if not self.reference or not self.reference.strip():
            return None
        ref_id = self.reference.strip().rsplit("/", 1)[-1]
        return ref_id or None


class Period(BaseModel):
    start: str | None = None
    end: str | None = None


class Participant(BaseModel):
    individual: Reference | None = None


class Patient(BaseModel):
    resourceType: Literal["Patient"] = "Patient"
    id: str | None = None
    name: list[HumanName] = []
    identifier: list[Identifier] = []
    birthDate: str | None = None
    gender: str | None = None


class Condition(BaseModel):
    resourceType: Literal["Condition"] = "Condition"
    id: str | None = None
    subject: Reference | None = None
    code: CodeableConcept | None = None
    recordedDate: str | None = None


class Encounter(BaseModel):
    resourceType: Literal["Encounter"] = "Encounter"
    id: str | None = None
    status: str | None = None
    subject: Reference | None = None
    period: Period | None = None
    participant: list[Participant] = []

    @property
    def patient_id(self) -> str | None:
        return self.subject.reference_id if self.subject else None

    @property
    def practitioner_id(self) -> str | None:
        """Id from the first participant that references a Practitioner."""
        for part in self.participant:
            ref = part.individual
            if ref and ref.reference and "Practitioner/" in ref.reference:
                return ref.reference_id
        return None


class Practitioner(BaseModel):
    resourceType: Literal["Practitioner"] = "Practitioner"
    id: str | None = None
    name: list[HumanName] = []
    identifier: list[Identifier] = []


Resource = Patient | Condition | Encounter | Practitioner

_RESOURCE_TYPES: dict[str, type[BaseModel]] = {
    "Patient": Patient,
    "Condition": Condition,
    "Encounter": Encounter,
    "Practitioner": Practitioner,
}

R = TypeVar("R", Patient, Condition, Encounter, Practitioner)


def parse_resource(data: dict[str, Any] | None) -> Resource | None:
    """Deserialize one FHIR resource into its typed variant.

    Returns None for unknown resource types and payloads that fail validation.
    """
    if not isinstance(data, dict):
        return None
    model = _RESOURCE_TYPES.get(data.get("resourceType", ""))
    if model is None:
        return None
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.warning(
            "Skipping malformed %s resource %s: %s",
            data.get("resourceType"), data.get("id"), e,
        )
        return None


class Bundle(BaseModel):
    """Search result set from one FHIR query."""

    bundle_type: str = "searchset"
    total: int | None = None
    entries: list[Resource] = []

    @classmethod
    def from_json(cls, data: dict[str, Any] | None) -> "Bundle":
        """Build a Bundle from raw JSON, skipping entries we cannot use."""
        if not data or data.get("resourceType") != "Bundle":
            return cls(total=0)
        entries = []
        for entry in data.get("entry") or []:
            resource = parse_resource(entry.get("resource"))
            if resource is not None:
                entries.append(resource)
        return cls(
            bundle_type=data.get("type") or "searchset",
            total=data.get("total"),
            entries=entries,
        )

    def of(self, kind: type[R]) -> list[R]:
        """Entries of a single resource kind, in bundle order."""
        return [e for e in self.entries if isinstance(e, kind)]

    def __len__(self) -> int:
        return len(self.entries)


def display_name(resource: Patient | Practitioner) -> str:
    """Human-readable name from the first HumanName of a resource."""
    if not resource.name:
        return ""
    name = resource.name[0]
    full = " ".join(part for part in [" ".join(name.given), name.family or ""] if part)
    return full.strip() or (name.text or "")


def first_given(resource: Patient | Practitioner) -> str | None:
    if not resource.name or not resource.name[0].given:
        return None
    return resource.name[0].given[0]


def family_name(resource: Patient | Practitioner) -> str | None:
    if not resource.name:
        return None
    return resource.name[0].family


def first_identifier_value(resource: Patient | Practitioner) -> str | None:
    for ident in resource.identifier:
        if ident.value:
            return ident.value
    return None
