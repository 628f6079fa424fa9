"""
api/routes/v1/auth.py -- Registration, login and identity endpoints.

Routes:
  POST /account/register  -- create a credential; 201 {identifier}
  POST /auth/login        -- password login; returns token + opaque
  GET  /auth/me           -- admitted principal (requires auth)

Security:
  [C1] AuthService.login() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on login responses (they carry the session secret).
  Failures raise AuthError subclasses; api/main.py renders them as
  {"error": {"code", "message"}} with the error's own status code.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import CredentialsRequest, LoginResponse, MeResponse, RegisterResponse
from auth.dependencies import get_current_user_id
from auth.service import AuthService

# Auth policy:
# - POST /account/register: public
# - POST /auth/login:       public
# - GET  /auth/me:          requires an admitted principal (get_current_user_id)
router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


@router.post("/account/register", response_model=RegisterResponse, status_code=201)
async def register(request: Request, body: CredentialsRequest) -> RegisterResponse:
    """Register a new identifier/password pair.

    Policy errors (weak password, malformed email, duplicate identifier) come
    back as 400/409 with a user-facing message.
    """
    identifier = await _service(request).register(body.identifier, body.password)
    return RegisterResponse(identifier=identifier)


@router.post("/auth/login", response_model=LoginResponse)
async def login(request: Request, body: CredentialsRequest) -> JSONResponse:
    """Authenticate with identifier and password and open a new session.

    Returns the same generic error for unknown identifier and wrong password
    ("invalid_credentials") to avoid leaking which identifiers exist.
    """
    service = _service(request)
    result = await service.login(body.identifier, body.password)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            token=result.token,
            opaque=result.opaque,
            user_id=result.user_id,
            expires_in=service.issuer.expire_seconds,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/auth/me", response_model=MeResponse)
async def me(user_id: int = Depends(get_current_user_id)) -> MeResponse:
    """Return the principal the gate admitted for this request."""
    return MeResponse(user_id=user_id)
