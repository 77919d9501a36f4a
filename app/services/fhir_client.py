"""FHIR R4 client for the clinical-data server backing the search API.

Thin async wrapper over httpx: one method per query the search service needs.
Searches return a typed ``Bundle`` (or None when the server sends no body),
reads return the typed resource (or None on 404). Anything else that goes
wrong is raised as ``FhirClientError`` so callers can decide how to recover.
The client is read-only and never retries or caches.
"""

import logging
from typing import Any
from urllib.parse import quote

import httpx

from app.config import FHIR_BASE_URL, FHIR_TIMEOUT
from app.models.fhir import Bundle, Patient, Practitioner, parse_resource

logger = logging.getLogger(__name__)

FHIR_HEADERS = {
    "Accept": "application/fhir+json",
}


class FhirClientError(Exception):
    """The FHIR server could not be reached or answered with an error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def practitioner_reference(practitioner: str) -> str:
    """Normalize a bare practitioner id to a ``Practitioner/<id>`` reference."""
    if practitioner.startswith("Practitioner/"):
        return practitioner
    return f"Practitioner/{practitioner}"


class FhirClient:
    """Async client for one FHIR R4 base URL."""

    def __init__(
        self,
        base_url: str = FHIR_BASE_URL,
        timeout: float = FHIR_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=FHIR_HEADERS,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "FhirClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: dict[str, str] | None = None) -> dict | None:
        """GET a FHIR path and return the decoded JSON body.

        Returns None for 404 and for empty bodies.
        """
        try:
            resp = await self._client.get(path, params=params)
        except httpx.TimeoutException as e:
            raise FhirClientError(f"FHIR request {path} timed out") from e
        except httpx.HTTPError as e:
            raise FhirClientError(f"FHIR request {path} failed: {e}") from e

        if resp.status_code == 404:
            logger.debug("FHIR %s returned 404", path)
            return None
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FhirClientError(
                f"FHIR server returned HTTP {resp.status_code} for {path}",
                status_code=resp.status_code,
            ) from e

        if not resp.content.strip():
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise FhirClientError(f"FHIR response for {path} is not JSON") from e

    async def _search(self, resource_type: str, params: dict[str, str]) -> Bundle | None:
        data = await self._get(f"/{resource_type}", params=params)
        if data is None:
            return None
        bundle = Bundle.from_json(data)
        logger.info(
            "FHIR %s search %s returned %d entries", resource_type, params, len(bundle)
        )
        return bundle

    async def search_patients(self, name: str) -> Bundle | None:
        """Patients whose name matches ``name``."""
        return await self._search("Patient", {"name": name})

    async def search_conditions(self, text: str) -> Bundle | None:
        """Conditions whose code text matches ``text``."""
        return await self._search("Condition", {"code:text": text})

    async def get_patient(self, patient_id: str) -> Patient | None:
        data = await self._get(f"/Patient/{quote(patient_id, safe='')}")
        resource = parse_resource(data)
        return resource if isinstance(resource, Patient) else None

    async def get_practitioner(self, practitioner_id: str) -> Practitioner | None:
        data = await self._get(f"/Practitioner/{quote(practitioner_id, safe='')}")
        resource = parse_resource(data)
        return resource if isinstance(resource, Practitioner) else None

    async def search_practitioner_by_identifier(self, identifier: str) -> Bundle | None:
        """Practitioners carrying an external identifier (e.g. a personal number)."""
        return await self._search("Practitioner", {"identifier": identifier})

    async def search_encounters_by_practitioner(self, practitioner: str) -> Bundle | None:
        """Encounters for a practitioner, given as an id or ``Practitioner/<id>``."""
        return await self._search(
            "Encounter", {"practitioner": practitioner_reference(practitioner)}
        )

    async def search_encounters_by_practitioner_and_date(
        self, practitioner_id: str, date: str
    ) -> Bundle | None:
        return await self._search(
            "Encounter",
            {"practitioner": practitioner_reference(practitioner_id), "date": date},
        )
