"""
auth/oauth.py -- Authlib OAuth provider registry and profile normalization.

Reads configuration from core.config.get_settings() at module load to decide
which providers are active. Only providers with both client ID and secret
configured get registered.

Provider payloads never reach IdentityDirectory as raw JSON. The adapters
below turn each provider's response into one OAuthProfile value object;
anything missing a usable email or stable id is rejected with
ValidationError at this boundary.

Security notes:
  [H1] Email verification is mandatory. An unverified email from a provider
       could belong to an attacker who added a victim's address without
       confirming it.

  OAuth state parameter (CSRF protection) is handled by authlib via
  Starlette SessionMiddleware.

Supported providers:
  github -- Authorization code flow; static endpoints.
  google -- Authorization code flow; OIDC discovery.

Layer rule: no imports from api/, teams/, or cache/.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from auth.models import OAuthProfile, OAuthProvider
from core.config import get_settings
from core.errors import ValidationError

logger = logging.getLogger("teamauth.auth.oauth")

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

if _cfg.github_client_id and _cfg.github_client_secret:
    oauth.register(
        name=OAuthProvider.GITHUB.value,
        client_id=_cfg.github_client_id,
        client_secret=_cfg.github_client_secret,
        access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
        authorize_url="https://github.com/login/oauth/authorize",
        api_base_url="https://api.github.com/",
        client_kwargs={"scope": "read:user user:email"},
    )
    logger.info("GitHub OAuth provider registered")

if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name=OAuthProvider.GOOGLE.value,
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google OAuth provider registered")


def get_enabled_providers() -> list[dict]:
    """Return {"name", "label"} for every provider with credentials configured."""
    cfg = get_settings()
    providers: list[dict] = []
    if cfg.github_client_id and cfg.github_client_secret:
        providers.append({"name": OAuthProvider.GITHUB.value, "label": "GitHub"})
    if cfg.google_client_id and cfg.google_client_secret:
        providers.append({"name": OAuthProvider.GOOGLE.value, "label": "Google"})
    return providers


def parse_provider(name: str) -> OAuthProvider:
    try:
        return OAuthProvider(name)
    except ValueError:
        raise ValidationError(f"Unknown OAuth provider: {name!r}") from None


# ---------------------------------------------------------------------------
# Profile adapters -- provider-specific parsing ends here [H1]
# ---------------------------------------------------------------------------


def github_profile(user: dict, emails: list[dict]) -> OAuthProfile:
    """Normalize GitHub's /user and /user/emails responses.

    Only an address flagged both primary and verified is accepted.
    """
    email = next(
        (entry.get("email") for entry in emails if entry.get("primary") and entry.get("verified")),
        None,
    )
    if not email:
        raise ValidationError(
            "GitHub OAuth: no primary verified email found. "
            "The user must verify their email address on GitHub before logging in."
        )
    return OAuthProfile(
        provider=OAuthProvider.GITHUB,
        provider_id=str(user.get("id") or ""),
        email=email,
        display_name=user.get("name") or user.get("login"),
        avatar_url=user.get("avatar_url"),
    )


def google_profile(userinfo: dict | None) -> OAuthProfile:
    """Normalize the OIDC userinfo claims Google returns with the id_token.

    A missing email_verified claim counts as unverified.
    """
    if not userinfo:
        raise ValidationError("Google OAuth: no userinfo in token response.")
    if not userinfo.get("email_verified", False):
        raise ValidationError(
            "Google OAuth: email is not verified. "
            "The provider must confirm email ownership before login is allowed."
        )
    return OAuthProfile(
        provider=OAuthProvider.GOOGLE,
        provider_id=str(userinfo.get("sub") or ""),
        email=userinfo.get("email") or "",
        display_name=userinfo.get("name"),
        avatar_url=userinfo.get("picture"),
    )


async def fetch_oauth_profile(client, provider: OAuthProvider, token: dict) -> OAuthProfile:
    """Fetch whatever the provider needs beyond the token and normalize it.

    GitHub does not put the email in the token, so two API calls are made.
    Google's userinfo arrives inside the token response.
    """
    if provider == OAuthProvider.GITHUB:
        resp = await client.get("user", token=token)
        resp.raise_for_status()
        emails_resp = await client.get("user/emails", token=token)
        emails_resp.raise_for_status()
        return github_profile(resp.json(), emails_resp.json())
    return google_profile(token.get("userinfo"))
