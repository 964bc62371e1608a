"""Pydantic schemas for the import session API."""

from pydantic import Field, field_validator

from promptvault.models import Platform, WireModel, check_blob_url


class CreateSessionRequest(WireModel):
    platform: Platform
    file_name: str = Field(min_length=1)
    file_size: int = Field(ge=0)
    file_type: str = "application/octet-stream"


class CreateSessionResponse(WireModel):
    session_id: str


class ProcessRequest(WireModel):
    session_id: str = Field(min_length=1)
    blob_url: str
    platform: Platform

    @field_validator("blob_url")
    @classmethod
    def validate_blob_url(cls, value: str) -> str:
        return check_blob_url(value)


class ProcessResponse(WireModel):
    message: str
    message_id: str
