"""
api/routes/v1/profiles.py -- Profile administration routes for the Passport REST API.

Routes (in registration order to avoid FastAPI path capture conflicts):
  POST /profiles                        -- create profile with its roles
  GET  /profiles                        -- list all profiles
  GET  /profiles/search                 -- search by name, roles, status
  GET  /profiles/{profile_id}           -- profile detail
  PUT  /profiles/{profile_id}           -- rename and replace roles
  POST /profiles/{profile_id}/enable    -- enable profile
  POST /profiles/{profile_id}/disable   -- disable profile; its roles stop being granted
  POST /profiles/{profile_id}/roles     -- replace the profile's roles
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from admin.services import AdminService
from api.models import AssignRolesRequest, ProfileCreate, ProfileResponse, ProfileUpdate
from auth.dependencies import require_admin

router = APIRouter(dependencies=[Depends(require_admin)])


@router.post("/profiles", response_model=ProfileResponse, status_code=201)
def create_profile(request: Request, body: ProfileCreate) -> ProfileResponse:
    admin: AdminService = request.app.state.admin
    return ProfileResponse.from_profile(admin.create_profile(body.name, body.role_ids))


@router.get("/profiles", response_model=list[ProfileResponse])
def list_profiles(request: Request) -> list[ProfileResponse]:
    admin: AdminService = request.app.state.admin
    return [ProfileResponse.from_profile(p) for p in admin.list_profiles()]


@router.get("/profiles/search", response_model=list[ProfileResponse])
def search_profiles(
    request: Request,
    name: Optional[str] = None,
    role_ids: list[int] = Query(default=[]),
    disabled: Optional[bool] = None,
) -> list[ProfileResponse]:
    """Search profiles. Omit ``disabled`` to include both enabled and disabled ones."""
    admin: AdminService = request.app.state.admin
    profiles = admin.search_profiles(name=name, role_ids=role_ids or None, disabled=disabled)
    return [ProfileResponse.from_profile(p) for p in profiles]


@router.get("/profiles/{profile_id}", response_model=ProfileResponse)
def get_profile(request: Request, profile_id: int) -> ProfileResponse:
    admin: AdminService = request.app.state.admin
    return ProfileResponse.from_profile(admin.get_profile(profile_id))


@router.put("/profiles/{profile_id}", response_model=ProfileResponse)
def update_profile(request: Request, profile_id: int, body: ProfileUpdate) -> ProfileResponse:
    admin: AdminService = request.app.state.admin
    return ProfileResponse.from_profile(admin.update_profile(profile_id, body.name, body.role_ids))


@router.post("/profiles/{profile_id}/enable", response_model=ProfileResponse)
def enable_profile(request: Request, profile_id: int) -> ProfileResponse:
    admin: AdminService = request.app.state.admin
    return ProfileResponse.from_profile(admin.set_profile_disabled(profile_id, False))


@router.post("/profiles/{profile_id}/disable", response_model=ProfileResponse)
def disable_profile(request: Request, profile_id: int) -> ProfileResponse:
    admin: AdminService = request.app.state.admin
    return ProfileResponse.from_profile(admin.set_profile_disabled(profile_id, True))


@router.post("/profiles/{profile_id}/roles", response_model=ProfileResponse)
def assign_roles(request: Request, profile_id: int, body: AssignRolesRequest) -> ProfileResponse:
    admin: AdminService = request.app.state.admin
    return ProfileResponse.from_profile(admin.assign_roles(profile_id, body.role_ids))
