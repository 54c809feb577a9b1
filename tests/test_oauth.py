"""
tests/test_oauth.py -- Tests for the provider adapters in auth/oauth.py.

Covers:
  - github_profile(): primary+verified email selection, display name fallback
  - google_profile(): email_verified enforcement, field mapping
  - fetch_oauth_profile(): GitHub makes two API calls, Google reads userinfo
  - parse_provider(): unknown names rejected
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from auth.models import OAuthProvider
from auth.oauth import fetch_oauth_profile, github_profile, google_profile, parse_provider
from core.errors import ValidationError

_GH_USER = {"id": 42, "login": "octocat", "name": None, "avatar_url": "https://avatars/42"}


class TestGithubProfile:
    def test_primary_verified_email(self) -> None:
        emails = [
            {"email": "old@example.com", "primary": False, "verified": True},
            {"email": "octo@example.com", "primary": True, "verified": True},
        ]
        profile = github_profile(_GH_USER, emails)
        assert profile.provider == OAuthProvider.GITHUB
        assert profile.provider_id == "42"
        assert profile.email == "octo@example.com"
        assert profile.display_name == "octocat"
        assert profile.avatar_url == "https://avatars/42"

    def test_name_preferred_over_login(self) -> None:
        emails = [{"email": "octo@example.com", "primary": True, "verified": True}]
        assert github_profile({**_GH_USER, "name": "Octo Cat"}, emails).display_name == "Octo Cat"

    def test_unverified_primary_rejected(self) -> None:
        emails = [{"email": "octo@example.com", "primary": True, "verified": False}]
        with pytest.raises(ValidationError):
            github_profile(_GH_USER, emails)

    def test_no_emails_rejected(self) -> None:
        with pytest.raises(ValidationError):
            github_profile(_GH_USER, [])

    def test_missing_id_rejected(self) -> None:
        emails = [{"email": "octo@example.com", "primary": True, "verified": True}]
        with pytest.raises(ValidationError):
            github_profile({"login": "octocat"}, emails)


class TestGoogleProfile:
    def test_verified_userinfo(self) -> None:
        profile = google_profile(
            {
                "sub": "1099",
                "email": "g@example.com",
                "email_verified": True,
                "name": "Gee",
                "picture": "https://pic",
            }
        )
        assert profile.provider == OAuthProvider.GOOGLE
        assert (profile.provider_id, profile.email, profile.display_name, profile.avatar_url) == (
            "1099",
            "g@example.com",
            "Gee",
            "https://pic",
        )

    @pytest.mark.parametrize("userinfo", [None, {}, {"sub": "1", "email": "g@example.com"}])
    def test_missing_or_unverified_rejected(self, userinfo) -> None:
        with pytest.raises(ValidationError):
            google_profile(userinfo)

    def test_missing_email_rejected(self) -> None:
        with pytest.raises(ValidationError):
            google_profile({"sub": "1", "email_verified": True})


class TestFetchProfile:
    def test_github_calls_user_and_emails(self) -> None:
        user_resp = MagicMock()
        user_resp.json.return_value = _GH_USER
        emails_resp = MagicMock()
        emails_resp.json.return_value = [{"email": "octo@example.com", "primary": True, "verified": True}]
        client = MagicMock()
        client.get = AsyncMock(side_effect=[user_resp, emails_resp])

        profile = asyncio.run(fetch_oauth_profile(client, OAuthProvider.GITHUB, {"access_token": "t"}))

        assert profile.email == "octo@example.com"
        assert [c.args[0] for c in client.get.call_args_list] == ["user", "user/emails"]

    def test_google_uses_token_userinfo(self) -> None:
        client = MagicMock()
        token = {"userinfo": {"sub": "7", "email": "g@example.com", "email_verified": True}}
        profile = asyncio.run(fetch_oauth_profile(client, OAuthProvider.GOOGLE, token))
        assert profile.provider_id == "7"
        client.get.assert_not_called()


class TestParseProvider:
    def test_known(self) -> None:
        assert parse_provider("google") == OAuthProvider.GOOGLE

    def test_unknown(self) -> None:
        with pytest.raises(ValidationError):
            parse_provider("myspace")
