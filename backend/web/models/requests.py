"""Pydantic request models for the repobox web API."""

from pydantic import BaseModel, ConfigDict, Field


class CreateSandboxRequest(BaseModel):
    # Required fields are checked by the router so a missing field answers 400, not 422.
    model_config = ConfigDict(populate_by_name=True)

    owner: str | None = None
    repo: str | None = None
    branch: str | None = None
    session_id: str | None = Field(default=None, alias="sessionId")
    token: str | None = None
