"""Search orchestration over the FHIR server.

A search request goes through a short, fixed pipeline:

    dispatch -> (resolve practitioner) -> primary search -> secondary reads -> normalize

Failure handling is the important part and is the same for every path:

- the primary search failing, or returning no bundle, yields an empty list
  for the whole call;
- a secondary read (one patient, one practitioner) failing or returning
  nothing drops only the entry that needed it;
- a practitioner token that cannot be resolved yields an empty list.

Nothing in here raises to the caller. Each external call is wrapped by
``attempt`` into an ``Outcome`` so the two failure scopes stay explicit.
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar

from app.models.fhir import (
    Bundle,
    Condition,
    Encounter,
    Patient,
    Practitioner,
    display_name,
    family_name,
    first_given,
    first_identifier_value,
)
from app.models.search import (
    ConditionQuery,
    EncounterSearchResult,
    NameQuery,
    PatientQuery,
    PatientSearchResult,
    PractitionerDateQuery,
    PractitionerQuery,
)
from app.services.fhir_client import FhirClientError, practitioner_reference

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("app.audit")

T = TypeVar("T")

# Canonical practitioner ids on our FHIR server are UUIDs
_CANONICAL_ID = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)


class ClinicalDataSource(Protocol):
    """The subset of ``FhirClient`` the search pipeline depends on."""

    async def search_patients(self, name: str) -> Bundle | None: ...

    async def search_conditions(self, text: str) -> Bundle | None: ...

    async def get_patient(self, patient_id: str) -> Patient | None: ...

    async def get_practitioner(self, practitioner_id: str) -> Practitioner | None: ...

    async def search_practitioner_by_identifier(self, identifier: str) -> Bundle | None: ...

    async def search_encounters_by_practitioner(self, practitioner: str) -> Bundle | None: ...

    async def search_encounters_by_practitioner_and_date(
        self, practitioner_id: str, date: str
    ) -> Bundle | None: ...


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of one pipeline stage: a value, or the reason there is none."""

    value: T | None = None
    error: str | None = None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, reason: str) -> "Outcome[T]":
        return cls(error=reason)

    @property
    def ok(self) -> bool:
        return self.error is None


async def attempt(stage: str, call: Awaitable[T | None]) -> Outcome[T]:
    """Await one external call and fold errors and empty answers into an Outcome."""
    try:
        value = await call
    except FhirClientError as e:
        logger.warning("%s failed: %s", stage, e)
        return Outcome.failure(str(e))
    except Exception as e:
        logger.warning("%s failed unexpectedly: %s", stage, e)
        return Outcome.failure(str(e))
    if value is None:
        logger.debug("%s returned nothing", stage)
        return Outcome.failure(f"{stage} returned nothing")
    return Outcome.success(value)


async def lookup_each(
    stage: str,
    ids: Iterable[str],
    fetch: Callable[[str], Awaitable[T | None]],
) -> dict[str, Outcome[T]]:
    """Fetch every distinct id concurrently, one Outcome per id."""
    distinct = list(dict.fromkeys(ids))
    outcomes = await asyncio.gather(*(attempt(f"{stage} {i}", fetch(i)) for i in distinct))
    return dict(zip(distinct, outcomes, strict=True))


def _present(value: str | None) -> bool:
    return value is not None and bool(value.strip())


def is_canonical_id(token: str) -> bool:
    return bool(_CANONICAL_ID.match(token))


def to_patient_result(patient: Patient) -> PatientSearchResult | None:
    """Normalize a Patient; missing name parts or identifiers stay None."""
    if not patient.id:
        return None
    return PatientSearchResult(
        id=patient.id,
        first_name=first_given(patient),
        last_name=family_name(patient),
        social_security_number=first_identifier_value(patient),
    )


# --- Identifier resolution ---


class PractitionerResolver:
    """Maps a practitioner token to the canonical FHIR Practitioner id.

    Callers may pass either the canonical id or an externally issued
    identifier such as a personal number. Canonical ids are used as-is.
    Anything else is first tried as a direct Practitioner read, then as an
    identifier search; the first practitioner found wins.
    """

    def __init__(self, client: ClinicalDataSource) -> None:
        self._client = client

    async def resolve(self, token: str) -> str | None:
        token = token.strip()
        if is_canonical_id(token):
            return token

        direct = await attempt("practitioner read", self._client.get_practitioner(token))
        if direct.ok and direct.value.id:
            return direct.value.id

        found = await attempt(
            "practitioner identifier search",
            self._client.search_practitioner_by_identifier(token),
        )
        if not found.ok:
            return None
        ids = [p.id for p in found.value.of(Practitioner) if p.id]
        if not ids:
            logger.info("No practitioner found for identifier %s", token)
            return None
        logger.info("Resolved practitioner identifier %s to %s", token, ids[0])
        return ids[0]


# --- Result composition ---


async def compose_patients_by_name(
    client: ClinicalDataSource, name: str
) -> list[PatientSearchResult]:
    bundle = await attempt("patient name search", client.search_patients(name))
    if not bundle.ok:
        return []
    results = [to_patient_result(p) for p in bundle.value.of(Patient)]
    return [r for r in results if r is not None]


async def compose_patients_by_condition(
    client: ClinicalDataSource, text: str
) -> list[PatientSearchResult]:
    """One patient result per matching condition whose subject can be read."""
    bundle = await attempt("condition search", client.search_conditions(text))
    if not bundle.ok:
        return []

    subject_ids = [
        c.subject.reference_id if c.subject else None
        for c in bundle.value.of(Condition)
    ]
    patients = await lookup_each(
        "patient read", [pid for pid in subject_ids if pid], client.get_patient
    )

    results = []
    for pid in subject_ids:
        outcome = patients.get(pid) if pid else None
        if outcome is None or not outcome.ok:
            continue
        result = to_patient_result(outcome.value)
        if result is not None:
            results.append(result)
    return results


async def compose_patients_by_practitioner(
    client: ClinicalDataSource, resolver: PractitionerResolver, token: str
) -> list[PatientSearchResult]:
    """Patients seen by a practitioner, one result per distinct patient."""
    practitioner_id = await resolver.resolve(token)
    if practitioner_id is None:
        return []

    bundle = await attempt(
        "encounter search",
        client.search_encounters_by_practitioner(practitioner_reference(practitioner_id)),
    )
    if not bundle.ok:
        return []

    patient_ids = list(dict.fromkeys(
        e.patient_id for e in bundle.value.of(Encounter) if e.patient_id
    ))
    patients = await lookup_each("patient read", patient_ids, client.get_patient)

    results = []
    for pid in patient_ids:
        outcome = patients[pid]
        if not outcome.ok:
            continue
        result = to_patient_result(outcome.value)
        if result is not None:
            results.append(result)
    return results


async def compose_encounters(
    client: ClinicalDataSource,
    resolver: PractitionerResolver,
    token: str,
    date: str | None = None,
) -> list[EncounterSearchResult]:
    """Encounters for a practitioner, optionally narrowed to one date.

    Encounters without a subject patient are dropped up front, as are
    encounters without an id since a result cannot point back to them. For
    the rest the patient and the treating practitioner are read. The treating
    practitioner is the encounter's first Practitioner participant, falling
    back to the searched practitioner when there is none or it cannot be
    read. An encounter whose patient or practitioner stays unresolved is
    dropped. Period start/end are passed through untouched.
    """
    practitioner_id = await resolver.resolve(token)
    if practitioner_id is None:
        return []

    if date:
        call = client.search_encounters_by_practitioner_and_date(practitioner_id, date)
    else:
        call = client.search_encounters_by_practitioner(practitioner_id)
    bundle = await attempt("encounter search", call)
    if not bundle.ok:
        return []

    encounters = [e for e in bundle.value.of(Encounter) if e.id and e.patient_id]
    if not encounters:
        return []

    practitioner_ids = [e.practitioner_id for e in encounters if e.practitioner_id]
    patients, practitioners = await asyncio.gather(
        lookup_each("patient read", [e.patient_id for e in encounters], client.get_patient),
        lookup_each(
            "practitioner read", [*practitioner_ids, practitioner_id], client.get_practitioner
        ),
    )
    searched = practitioners[practitioner_id]

    results = []
    for enc in encounters:
        patient = patients[enc.patient_id]
        practitioner = practitioners.get(enc.practitioner_id) if enc.practitioner_id else None
        if practitioner is None or not practitioner.ok:
            practitioner = searched
        if not patient.ok or not practitioner.ok:
            logger.debug("Dropping encounter %s: unresolved patient or practitioner", enc.id)
            continue
        period = enc.period
        results.append(EncounterSearchResult(
            id=enc.id,
            patient_id=enc.patient_id,
            practitioner_name=display_name(practitioner.value),
            start_time=period.start if period else None,
            end_time=period.end if period else None,
        ))
    return results


# --- Dispatch ---


def build_patient_query(
    name: str | None = None,
    condition: str | None = None,
    practitioner_id: str | None = None,
) -> PatientQuery | None:
    """Pick exactly one patient query: name, else condition, else practitioner."""
    if _present(name):
        return NameQuery(name=name.strip())
    if _present(condition):
        return ConditionQuery(text=condition.strip())
    if _present(practitioner_id):
        return PractitionerQuery(identifier=practitioner_id.strip())
    return None


class SearchService:
    """Entry point used by the HTTP layer. Never raises; failures yield []."""

    def __init__(
        self,
        client: ClinicalDataSource,
        audit: logging.Logger | None = None,
    ) -> None:
        self._client = client
        self._resolver = PractitionerResolver(client)
        self._audit = audit or audit_logger

    def _record(self, user: str, branch: str, **params: str | None) -> None:
        self._audit.info(
            "User %s searched by %s %s", user, branch, params,
            extra={"user": user, "branch": branch, "params": params},
        )

    async def search_patients(
        self,
        user: str,
        name: str | None = None,
        condition: str | None = None,
        practitioner_id: str | None = None,
    ) -> list[PatientSearchResult]:
        query = build_patient_query(name, condition, practitioner_id)
        if query is None:
            self._record(user, "none")
            return []
        branch = {
            NameQuery: "name",
            ConditionQuery: "condition",
            PractitionerQuery: "practitioner",
        }[type(query)]
        self._record(user, branch, **query.model_dump())
        return await self.run(query)

    async def search_encounters(
        self,
        user: str,
        practitioner_id: str | None,
        date: str | None = None,
    ) -> list[EncounterSearchResult]:
        if not _present(practitioner_id):
            self._record(user, "none")
            return []
        query = PractitionerDateQuery(
            identifier=practitioner_id.strip(),
            date=date.strip() if _present(date) else None,
        )
        branch = "encounters_by_date" if query.date else "encounters"
        self._record(user, branch, identifier=query.identifier, date=query.date)
        return await self.run(query)

    async def run(
        self, query: PatientQuery | PractitionerDateQuery
    ) -> list[PatientSearchResult] | list[EncounterSearchResult]:
        """Execute one query variant through its pipeline."""
        try:
            if isinstance(query, NameQuery):
                results = await compose_patients_by_name(self._client, query.name)
            elif isinstance(query, ConditionQuery):
                results = await compose_patients_by_condition(self._client, query.text)
            elif isinstance(query, PractitionerQuery):
                results = await compose_patients_by_practitioner(
                    self._client, self._resolver, query.identifier
                )
            elif isinstance(query, PractitionerDateQuery):
                results = await compose_encounters(
                    self._client, self._resolver, query.identifier, query.date
                )
            else:
                raise TypeError(f"Unsupported query type: {type(query).__name__}")
        except Exception:
            logger.exception("Search %r failed", query)
            return []
        logger.info("%s returned %d results", type(query).__name__, len(results))
        return results
