import os

from dotenv import load_dotenv

load_dotenv()

# External FHIR R4 server holding patients, conditions, encounters, practitioners
FHIR_BASE_URL = os.getenv("FHIR_BASE_URL", "http://localhost:8080/fhir")
FHIR_TIMEOUT = float(os.getenv("FHIR_TIMEOUT", "10"))

# Bearer token verification (Keycloak-issued JWTs)
JWT_SECRET = os.getenv("JWT_SECRET", "")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "")
JWT_ISSUER = os.getenv("JWT_ISSUER", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
