"""
api/routes/v1/roles.py -- Role administration routes for the Passport REST API.

Routes:
  POST   /roles            -- create role
  GET    /roles            -- list all roles
  GET    /roles/search     -- search by name
  DELETE /roles/{role_id}  -- delete role and unlink it from every profile
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from admin.services import AdminService
from api.models import RoleCreate, RoleResponse
from auth.dependencies import require_admin

router = APIRouter(dependencies=[Depends(require_admin)])


@router.post("/roles", response_model=RoleResponse, status_code=201)
def create_role(request: Request, body: RoleCreate) -> RoleResponse:
    admin: AdminService = request.app.state.admin
    return RoleResponse.from_role(admin.create_role(body.name))


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(request: Request) -> list[RoleResponse]:
    admin: AdminService = request.app.state.admin
    return [RoleResponse.from_role(r) for r in admin.list_roles()]


@router.get("/roles/search", response_model=list[RoleResponse])
def search_roles(request: Request, name: Optional[str] = None) -> list[RoleResponse]:
    admin: AdminService = request.app.state.admin
    return [RoleResponse.from_role(r) for r in admin.search_roles(name=name)]


@router.delete("/roles/{role_id}", response_model=RoleResponse)
def delete_role(request: Request, role_id: int) -> RoleResponse:
    """Delete a role. Returns the deleted role."""
    admin: AdminService = request.app.state.admin
    return RoleResponse.from_role(admin.delete_role(role_id))
