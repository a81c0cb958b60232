"""
api/routes/v1/auth.py -- Authentication and password recovery REST endpoints.

Routes:
  POST /api/v1/auth/login                  -- e-mail + password login; returns a JWT
  GET  /api/v1/auth/me                     -- current user info (requires auth)
  POST /api/v1/auth/change-password        -- change own password (requires auth)
  POST /api/v1/auth/request-reset-password -- start a password reset; always 200
  POST /api/v1/auth/reset                  -- confirm a reset with token + recovery password

Security:
  [H2] POST /login and POST /request-reset-password are rate-limited per IP.
  [C1] AuthService.login() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on login responses.
  [R1] request-reset-password answers the same way whether or not the e-mail exists.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    ChangePasswordRequest,
    ConfirmResetPasswordRequest,
    LoginRequest,
    LoginResponse,
    RequestResetPasswordRequest,
    UserInfoResponse,
)
from auth.dependencies import get_current_user
from auth.errors import InvalidCredentials
from auth.models import User
from auth.recovery import PasswordRecovery
from auth.service import AuthService, UserInfo
from auth.tokens import TOKEN_LIFETIME

# Auth policy:
# - POST /api/v1/auth/login:                  public
# - POST /api/v1/auth/request-reset-password: public
# - POST /api/v1/auth/reset:                  public -- the token + recovery password are the credential
# - GET  /api/v1/auth/me:                     requires auth (get_current_user)
# - POST /api/v1/auth/change-password:        requires auth (get_current_user)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(login_rate_limit)  # [H2] innermost, so the registered endpoint is the rate-limited wrapper
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with e-mail and password; return a signed JWT.

    Unknown e-mail, disabled account and wrong password all produce the same
    401 "bad_credentials" body.
    """
    auth_service: AuthService = request.app.state.auth_service
    try:
        result = auth_service.login(body.email, body.password)
    except InvalidCredentials as exc:
        resp = JSONResponse(
            status_code=exc.status_code,
            content={"error": {"code": exc.code, "message": exc.public_message}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            token=result.token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=int(TOKEN_LIFETIME.total_seconds()),
            user=UserInfoResponse.from_info(result.user),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/request-reset-password")
@limiter.limit(login_rate_limit)
def request_reset_password(request: Request, body: RequestResetPasswordRequest) -> JSONResponse:
    """Start a password reset. The answer never reveals whether the e-mail is registered [R1]."""
    recovery: PasswordRecovery = request.app.state.recovery
    recovery.request(body.email)
    return JSONResponse(
        status_code=200,
        content={"message": "If the e-mail is registered, reset instructions have been sent."},
    )


@router.post("/auth/reset")
@limiter.limit(login_rate_limit)
def confirm_reset_password(request: Request, body: ConfirmResetPasswordRequest) -> JSONResponse:
    """Consume a reset token and set the new password.

    Every failure is the same 404 "Reset token not found." via the
    RecoveryNotFound handler in api/main.py.
    """
    recovery: PasswordRecovery = request.app.state.recovery
    recovery.confirm(body.token, body.recovery_password, body.new_password)
    return JSONResponse(status_code=200, content={"message": "Password updated."})


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserInfoResponse)
async def me(current_user: User = Depends(get_current_user)) -> UserInfoResponse:
    """Return identity information for the currently authenticated user."""
    return UserInfoResponse.from_info(UserInfo.load(current_user))


@router.post("/auth/change-password")
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Change the caller's own password.

    The caller already holds a valid token, so a wrong current password is
    a 403 rather than a 401.
    """
    auth_service: AuthService = request.app.state.auth_service
    try:
        auth_service.change_password(current_user.username, body.current_password, body.new_password)
    except InvalidCredentials as exc:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": InvalidCredentials.public_message},
        ) from exc
    return JSONResponse(status_code=200, content={"message": "Password changed."})
