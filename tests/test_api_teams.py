"""
tests/test_api_teams.py -- HTTP tests for /api/v1/teams/*.

Covers:
  - create team (201) and list own teams
  - invite flow end to end: OWNER-system-role inviter adds a signed-up user
  - invite errors: OWNER role -> 400 invalid_role, duplicate -> 400
    already_member, unknown email -> 400 user_not_found, MEMBER inviter -> 403
  - member listing order, role change, removal (204), owner protection
  - unknown team -> 403 for non-members (membership is checked first)
"""

from __future__ import annotations

from conftest import auth_header, signup


def _create_team(client, token: str, name: str = "Platform") -> dict:
    resp = client.post("/api/v1/teams", json={"name": name}, headers=auth_header(token))
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestTeams:
    def test_create_and_list(self, api_client) -> None:
        client, token, owner_id = api_client
        team = _create_team(client, token, "Infra")
        assert team["owner_id"] == owner_id
        names = [t["name"] for t in client.get("/api/v1/teams", headers=auth_header(token)).json()]
        assert names[0] == "Owner's Team"
        assert "Infra" in names

    def test_blank_name_rejected(self, api_client) -> None:
        client, token, _ = api_client
        resp = client.post("/api/v1/teams", json={"name": "   "}, headers=auth_header(token))
        assert resp.status_code == 422

    def test_requires_auth(self, api_client) -> None:
        client, _, _ = api_client
        assert client.get("/api/v1/teams").status_code == 401


class TestInvite:
    def test_owner_invites_signed_up_user(self, api_client) -> None:
        client, token, owner_id = api_client
        team = _create_team(client, token)
        b = signup(client, name="Bea")

        resp = client.post(
            f"/api/v1/teams/{team['id']}/invite",
            json={"email": b["user"]["email"], "role": "DEVELOPER"},
            headers=auth_header(token),
        )
        assert resp.status_code == 201
        assert resp.json()["role"] == "DEVELOPER"
        assert resp.json()["assigned_by"] == owner_id

        members = client.get(f"/api/v1/teams/{team['id']}/members", headers=auth_header(token)).json()
        assert [(m["user_id"], m["role"]) for m in members] == [
            (owner_id, "OWNER"),
            (b["user"]["id"], "DEVELOPER"),
        ]
        assert members[1]["email"] == b["user"]["email"]
        assert members[1]["name"] == "Bea"

        # The invitee can see the team and its members.
        b_teams = client.get("/api/v1/teams", headers=auth_header(b["access_token"])).json()
        assert team["id"] in [t["id"] for t in b_teams]
        assert client.get(
            f"/api/v1/teams/{team['id']}/members", headers=auth_header(b["access_token"])
        ).status_code == 200

    def test_owner_role_rejected(self, api_client) -> None:
        client, token, _ = api_client
        team = _create_team(client, token)
        b = signup(client)
        resp = client.post(
            f"/api/v1/teams/{team['id']}/invite",
            json={"email": b["user"]["email"], "role": "OWNER"},
            headers=auth_header(token),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_role"

    def test_duplicate_invite(self, api_client) -> None:
        client, token, _ = api_client
        team = _create_team(client, token)
        b = signup(client)
        url = f"/api/v1/teams/{team['id']}/invite"
        assert client.post(url, json={"email": b["user"]["email"]}, headers=auth_header(token)).status_code == 201
        resp = client.post(url, json={"email": b["user"]["email"]}, headers=auth_header(token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "already_member"

    def test_unknown_invitee(self, api_client) -> None:
        client, token, _ = api_client
        team = _create_team(client, token)
        resp = client.post(
            f"/api/v1/teams/{team['id']}/invite", json={"email": "nobody@example.com"}, headers=auth_header(token)
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "user_not_found"

    def test_member_system_role_cannot_invite_to_own_team(self, api_client) -> None:
        client, _, _ = api_client
        a = signup(client)
        b = signup(client)
        personal = client.get("/api/v1/teams", headers=auth_header(a["access_token"])).json()[0]
        resp = client.post(
            f"/api/v1/teams/{personal['id']}/invite",
            json={"email": b["user"]["email"]},
            headers=auth_header(a["access_token"]),
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_promoted_team_lead_can_invite(self, api_client) -> None:
        client, token, _ = api_client
        a = signup(client)
        b = signup(client)
        promoted = client.patch(
            f"/api/v1/users/{a['user']['id']}/role", json={"role": "TEAM_LEAD"}, headers=auth_header(token)
        )
        assert promoted.status_code == 200
        personal = client.get("/api/v1/teams", headers=auth_header(a["access_token"])).json()[0]
        resp = client.post(
            f"/api/v1/teams/{personal['id']}/invite",
            json={"email": b["user"]["email"], "role": "TESTER"},
            headers=auth_header(a["access_token"]),
        )
        assert resp.status_code == 201


class TestMembers:
    def _team_with_member(self, client, token: str) -> tuple[dict, dict]:
        team = _create_team(client, token)
        b = signup(client)
        resp = client.post(
            f"/api/v1/teams/{team['id']}/invite", json={"email": b["user"]["email"]}, headers=auth_header(token)
        )
        assert resp.status_code == 201
        return team, b

    def test_change_role(self, api_client) -> None:
        client, token, _ = api_client
        team, b = self._team_with_member(client, token)
        resp = client.patch(
            f"/api/v1/teams/{team['id']}/members/{b['user']['id']}", json={"role": "ADMIN"}, headers=auth_header(token)
        )
        assert resp.status_code == 200
        assert resp.json()["role"] == "ADMIN"

    def test_cannot_change_owner(self, api_client) -> None:
        client, token, owner_id = api_client
        team, _ = self._team_with_member(client, token)
        resp = client.patch(
            f"/api/v1/teams/{team['id']}/members/{owner_id}", json={"role": "ADMIN"}, headers=auth_header(token)
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_operation"

    def test_member_cannot_change_roles(self, api_client) -> None:
        client, token, owner_id = api_client
        team, b = self._team_with_member(client, token)
        resp = client.patch(
            f"/api/v1/teams/{team['id']}/members/{owner_id}",
            json={"role": "MEMBER"},
            headers=auth_header(b["access_token"]),
        )
        assert resp.status_code == 403

    def test_remove_member(self, api_client) -> None:
        client, token, owner_id = api_client
        team, b = self._team_with_member(client, token)
        resp = client.delete(f"/api/v1/teams/{team['id']}/members/{b['user']['id']}", headers=auth_header(token))
        assert resp.status_code == 204
        members = client.get(f"/api/v1/teams/{team['id']}/members", headers=auth_header(token)).json()
        assert [m["user_id"] for m in members] == [owner_id]

    def test_owner_cannot_be_removed(self, api_client) -> None:
        client, token, owner_id = api_client
        team, _ = self._team_with_member(client, token)
        resp = client.delete(f"/api/v1/teams/{team['id']}/members/{owner_id}", headers=auth_header(token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_operation"

    def test_member_leaves(self, api_client) -> None:
        client, token, _ = api_client
        team, b = self._team_with_member(client, token)
        resp = client.delete(
            f"/api/v1/teams/{team['id']}/members/{b['user']['id']}", headers=auth_header(b["access_token"])
        )
        assert resp.status_code == 204
        resp = client.get(f"/api/v1/teams/{team['id']}/members", headers=auth_header(b["access_token"]))
        assert resp.status_code == 403

    def test_non_member_cannot_list(self, api_client) -> None:
        client, token, _ = api_client
        team = _create_team(client, token)
        stranger = signup(client)
        resp = client.get(f"/api/v1/teams/{team['id']}/members", headers=auth_header(stranger["access_token"]))
        assert resp.status_code == 403

    def test_unknown_team(self, api_client) -> None:
        client, token, _ = api_client
        resp = client.get("/api/v1/teams/does-not-exist/members", headers=auth_header(token))
        assert resp.status_code == 403
