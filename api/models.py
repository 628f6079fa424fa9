"""
API request and response models for tokenward REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Identifier and password content rules (email format, password policy) are
enforced by auth/service.py, not here, so the CLI and the API apply exactly
the same checks and produce the same errors.
"""

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CredentialsRequest(BaseModel):
    """Request body for POST /account/register and POST /auth/login."""

    model_config = ConfigDict(extra="ignore")

    identifier: str = Field(min_length=1, max_length=255)
    # bcrypt only reads 72 bytes; the password policy rejects anything longer.
    password: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class RegisterResponse(BaseModel):
    identifier: str


class LoginResponse(BaseModel):
    """Response body for a successful POST /auth/login.

    The client sends `token` back as "Authorization: Bearer: <token>:<user_id>".
    `opaque` is returned for clients that track the session secret; it is
    already embedded in the token.
    """

    token: str
    opaque: str
    user_id: int
    token_type: str = "bearer"
    expires_in: int


class MeResponse(BaseModel):
    user_id: int


class HealthResponse(BaseModel):
    status: str
    components: dict[str, str]


class ErrorDetail(BaseModel):
    code: str
    message: str
    # Incident detail, only populated when DEBUG=true.
    detail: str | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
