"""
api/routes/v1/teams.py -- Team and membership REST endpoints.

Routes (all require auth):
  POST   /api/v1/teams                              -- create team; caller becomes OWNER
  GET    /api/v1/teams                              -- teams the caller belongs to
  POST   /api/v1/teams/{team_id}/invite             -- add an existing user by email
  GET    /api/v1/teams/{team_id}/members            -- members, OWNER first (members only)
  PATCH  /api/v1/teams/{team_id}/members/{user_id}  -- change a member's team role (OWNER only)
  DELETE /api/v1/teams/{team_id}/members/{user_id}  -- remove a member or leave the team

Handlers are thin: every rule lives in TeamService, and its errors are
rendered by the AppError handler in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import InviteRequest, MemberResponse, MemberRoleUpdate, TeamCreate, TeamResponse
from auth.dependencies import get_current_user
from auth.models import User
from teams.service import TeamService

router = APIRouter()


def _teams(request: Request) -> TeamService:
    return request.app.state.team_service


@router.post("/teams", response_model=TeamResponse, status_code=201)
def create_team(
    request: Request,
    body: TeamCreate,
    current_user: User = Depends(get_current_user),
) -> TeamResponse:
    team = _teams(request).create_team(body.name, current_user.id)
    return TeamResponse.from_team(team)


@router.get("/teams", response_model=list[TeamResponse])
def list_user_teams(request: Request, current_user: User = Depends(get_current_user)) -> list[TeamResponse]:
    return [TeamResponse.from_team(t) for t in _teams(request).get_user_teams(current_user.id)]


@router.post("/teams/{team_id}/invite", response_model=MemberResponse, status_code=201)
def invite_member(
    request: Request,
    team_id: str,
    body: InviteRequest,
    current_user: User = Depends(get_current_user),
) -> MemberResponse:
    membership = _teams(request).invite_member(team_id, current_user.id, body.email, body.role)
    return MemberResponse.from_membership(membership)


@router.get("/teams/{team_id}/members", response_model=list[MemberResponse])
def list_members(
    request: Request,
    team_id: str,
    current_user: User = Depends(get_current_user),
) -> list[MemberResponse]:
    return [MemberResponse.from_membership(m) for m in _teams(request).list_members(team_id, current_user.id)]


@router.patch("/teams/{team_id}/members/{user_id}", response_model=MemberResponse)
def update_member_role(
    request: Request,
    team_id: str,
    user_id: str,
    body: MemberRoleUpdate,
    current_user: User = Depends(get_current_user),
) -> MemberResponse:
    membership = _teams(request).update_member_role(team_id, user_id, body.role, current_user.id)
    return MemberResponse.from_membership(membership)


@router.delete("/teams/{team_id}/members/{user_id}", status_code=204)
def remove_member(
    request: Request,
    team_id: str,
    user_id: str,
    current_user: User = Depends(get_current_user),
) -> Response:
    _teams(request).remove_member(team_id, user_id, current_user.id)
    return Response(status_code=204)
