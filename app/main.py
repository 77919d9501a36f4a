import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.config import FHIR_BASE_URL, FHIR_TIMEOUT, LOG_LEVEL
from app.routers import search
from app.services.fhir_client import FhirClient
from app.services.search import SearchService

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting journal search against %s", FHIR_BASE_URL)
    client = FhirClient(FHIR_BASE_URL, timeout=FHIR_TIMEOUT)
    app.state.fhir_client = client
    app.state.search_service = SearchService(client)
    yield
    await client.aclose()
    logger.info("Journal search shut down")


app = FastAPI(
    title="Journal Search",
    description="Role-gated search over patients, conditions and encounters in a FHIR server",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(search.router)


@app.get("/health")
async def health():
    return {"status": "ok"}
