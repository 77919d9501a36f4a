"""Search queries and the normalized results returned to callers."""

from pydantic import BaseModel, ConfigDict, Field


class NameQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str


class ConditionQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str


class PractitionerQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: str


class PractitionerDateQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: str
    date: str | None = None


PatientQuery = NameQuery | ConditionQuery | PractitionerQuery


class PatientSearchResult(BaseModel):
    """A patient as returned by /api/search/patients."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    first_name: str | None = Field(None, alias="firstName")
    last_name: str | None = Field(None, alias="lastName")
    social_security_number: str | None = Field(None, alias="socialSecurityNumber")


class EncounterSearchResult(BaseModel):
    """An encounter as returned by /api/search/encounters.

    Start and end times are copied verbatim from the FHIR period.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    patient_id: str = Field(alias="patientId")
    practitioner_name: str = Field("", alias="practitionerName")
    start_time: str | None = Field(None, alias="startTime")
    end_time: str | None = Field(None, alias="endTime")


class UserInfo(BaseModel):
    username: str
    roles: list[str] = []
