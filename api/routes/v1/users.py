"""
api/routes/v1/users.py -- User administration routes for the Passport REST API.

Routes (in registration order to avoid FastAPI path capture conflicts):
  POST /users                     -- create user with a generated password
  GET  /users/search              -- search by name, e-mail, profiles, roles, status (or all)
  GET  /users/{user_id}           -- user detail
  PUT  /users/{user_id}           -- update name, e-mail and optionally profiles
  POST /users/{user_id}/enable    -- re-enable an account
  POST /users/{user_id}/disable   -- disable an account (never your own)
  POST /users/{user_id}/profiles  -- replace the user's profiles

The plaintext password of a new user is never returned here; it is delivered
to the user through the notifier.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from admin.services import AdminService
from api.models import AssignProfilesRequest, UserCreate, UserResponse, UserUpdate
from auth.dependencies import require_admin
from auth.models import User

# Every route on this router is admin-only.
router = APIRouter(dependencies=[Depends(require_admin)])


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(request: Request, body: UserCreate) -> UserResponse:
    """Create an account. Duplicate username or e-mail is a 409; unknown profile IDs a 404."""
    admin: AdminService = request.app.state.admin
    user = admin.create_user(body.username, body.name, body.email, body.profile_ids)
    return UserResponse.from_user(user)


@router.get("/users/search", response_model=list[UserResponse])
def search_users(
    request: Request,
    name: Optional[str] = None,
    email: Optional[str] = None,
    profile_ids: list[int] = Query(default=[]),
    role_ids: list[int] = Query(default=[]),
    disabled: Optional[bool] = False,
    include_disabled: bool = False,
) -> list[UserResponse]:
    """Search users.

    Only active users are returned by default; ``disabled=true`` returns only
    disabled ones and ``include_disabled=true`` drops the status filter.
    """
    admin: AdminService = request.app.state.admin
    users = admin.search_users(
        name=name,
        email=email,
        profile_ids=profile_ids or None,
        role_ids=role_ids or None,
        disabled=None if include_disabled else disabled,
    )
    return [UserResponse.from_user(u) for u in users]


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: int) -> UserResponse:
    admin: AdminService = request.app.state.admin
    return UserResponse.from_user(admin.get_user(user_id))


@router.put("/users/{user_id}", response_model=UserResponse)
def update_user(request: Request, user_id: int, body: UserUpdate) -> UserResponse:
    admin: AdminService = request.app.state.admin
    user = admin.update_user(user_id, body.name, body.email, body.profile_ids)
    return UserResponse.from_user(user)


@router.post("/users/{user_id}/enable", response_model=UserResponse)
def enable_user(request: Request, user_id: int) -> UserResponse:
    admin: AdminService = request.app.state.admin
    return UserResponse.from_user(admin.set_user_disabled(user_id, False))


@router.post("/users/{user_id}/disable", response_model=UserResponse)
def disable_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Disable an account. Its existing tokens stop working immediately."""
    admin: AdminService = request.app.state.admin
    return UserResponse.from_user(admin.set_user_disabled(user_id, True, acting_user_id=current_user.id))


@router.post("/users/{user_id}/profiles", response_model=UserResponse)
def assign_profiles(request: Request, user_id: int, body: AssignProfilesRequest) -> UserResponse:
    admin: AdminService = request.app.state.admin
    return UserResponse.from_user(admin.assign_profiles(user_id, body.profile_ids))
