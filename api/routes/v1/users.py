"""
api/routes/v1/users.py -- User profile and system role endpoints.

Routes (all require auth):
  GET   /api/v1/users/me              -- own profile
  GET   /api/v1/users/me/permissions  -- own system role and its permission set
  GET   /api/v1/users/{user_id}       -- another user's profile
  PATCH /api/v1/users/{user_id}/role  -- change system role (change_user_roles permission)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import PermissionsResponse, SystemRoleUpdate, UserResponse
from auth.dependencies import get_current_user
from auth.directory import IdentityDirectory
from auth.models import User

router = APIRouter()


@router.get("/users/me", response_model=UserResponse)
def get_current_profile(current_user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.from_user(current_user)


@router.get("/users/me/permissions", response_model=PermissionsResponse)
def get_own_permissions(request: Request, current_user: User = Depends(get_current_user)) -> PermissionsResponse:
    perms = request.app.state.authz.permissions_for(current_user.role)
    return PermissionsResponse(role=current_user.role, permissions=sorted(perms))


@router.get("/users/{user_id}", response_model=UserResponse)
def get_profile(
    request: Request,
    user_id: str,
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    directory: IdentityDirectory = request.app.state.directory
    return UserResponse.from_user(directory.get_profile(user_id))


@router.patch("/users/{user_id}/role", response_model=UserResponse)
def update_system_role(
    request: Request,
    user_id: str,
    body: SystemRoleUpdate,
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    directory: IdentityDirectory = request.app.state.directory
    return UserResponse.from_user(directory.update_system_role(user_id, body.role, current_user))
