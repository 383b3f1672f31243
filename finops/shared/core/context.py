"""
Authenticated request context.

One immutable value per orchestrator invocation, handed to every collaborator
call instead of a long-lived OAuth-bound client object.
"""

from pydantic import BaseModel, ConfigDict, Field


class AuthContext(BaseModel):
    """Delegated credentials of an already-authenticated caller."""
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., description="Natural key of the caller (usually the Google account email)")
    access_token: str = Field(..., repr=False, description="OAuth2 bearer token with cloud-billing / bigquery scopes")
    query_project_id: str = Field(..., description="Project that runs query jobs and hosts the exports")
