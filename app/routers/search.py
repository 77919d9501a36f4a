import logging

from fastapi import APIRouter, Depends, Query, Request

from app.auth import Identity, require_roles
from app.models.search import EncounterSearchResult, PatientSearchResult, UserInfo
from app.services.search import SearchService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search", tags=["search"])


def get_search_service(request: Request) -> SearchService:
    return request.app.state.search_service


@router.get("/patients", response_model=list[PatientSearchResult])
async def search_patients(
    name: str | None = Query(None),
    condition: str | None = Query(None),
    practitioner_id: str | None = Query(None, alias="practitionerId"),
    identity: Identity = Depends(require_roles("doctor", "staff")),  # noqa: B008
    service: SearchService = Depends(get_search_service),  # noqa: B008
):
    """Search patients by name, condition text, or treating practitioner.

    Only one criterion is used per request, in that priority order.
    Accessible by doctors and staff.
    """
    return await service.search_patients(
        identity.username,
        name=name,
        condition=condition,
        practitioner_id=practitioner_id,
    )


@router.get("/encounters", response_model=list[EncounterSearchResult])
async def search_encounters(
    practitioner_id: str | None = Query(None, alias="practitionerId"),
    date: str | None = Query(None),
    identity: Identity = Depends(require_roles("doctor")),  # noqa: B008
    service: SearchService = Depends(get_search_service),  # noqa: B008
):
    """Search a practitioner's encounters, optionally on one date. Doctors only."""
    return await service.search_encounters(identity.username, practitioner_id, date)


@router.get("/me", response_model=UserInfo)
async def get_current_user(
    identity: Identity = Depends(require_roles("doctor", "staff", "patient")),  # noqa: B008
):
    logger.info(
        "User %s requested their info. Roles: %s", identity.username, sorted(identity.roles)
    )
    return UserInfo(username=identity.username, roles=sorted(identity.roles))
