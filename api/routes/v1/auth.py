"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/signup                      -- create local account + personal team; returns tokens
  POST /api/v1/auth/login                       -- password login; returns tokens
  POST /api/v1/auth/refresh                     -- exchange refresh token for a new pair
  POST /api/v1/auth/logout                      -- revoke a refresh token (requires auth)
  GET  /api/v1/auth/me                          -- current user profile (requires auth)
  GET  /api/v1/auth/providers                   -- list configured OAuth providers (public)
  GET  /api/v1/auth/oauth/{provider}/login      -- start OAuth authorization code flow
  GET  /api/v1/auth/oauth/{provider}/callback   -- finish OAuth flow; redirect to frontend with tokens

Security:
  [H2] POST /login is rate-limited per IP (Settings.login_rate_limit).
  [C1] IdentityDirectory.authenticate() equalizes timing -- never inline the
       lookup + bcrypt check here.
  [M5] Cache-Control: no-store on every response that carries tokens.
  Token failures of every kind leave this module as AuthenticationError and
  are rendered as one generic 401 by api/main.py.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

import httpx
from authlib.integrations.base_client import OAuthError
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import limiter
from api.models import (
    AuthResponse,
    LoginRequest,
    MessageResponse,
    OAuthProviderInfo,
    RefreshRequest,
    SignupRequest,
    TokenResponse,
    UserResponse,
)
from auth.dependencies import get_current_user
from auth.directory import IdentityDirectory
from auth.models import User
from auth.oauth import fetch_oauth_profile, get_enabled_providers, parse_provider
from auth.tokens import TokenService, hash_password
from core.config import get_settings
from core.errors import InvalidToken, UserNotFound, ValidationError

logger = logging.getLogger("teamauth.api.auth")

# Auth policy:
# - POST /auth/signup, /auth/login, /auth/refresh:  public
# - GET  /auth/providers, /auth/oauth/*:            public
# - POST /auth/logout, GET /auth/me:                requires auth (get_current_user)
router = APIRouter()


def _no_store(payload: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=payload)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Password accounts
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=AuthResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Register an email/password account.

    The account is created together with a personal team owned by the new
    user. Fails with duplicate_email if the address is taken.
    """
    directory: IdentityDirectory = request.app.state.directory
    tokens: TokenService = request.app.state.token_service
    user = directory.create_local(
        body.email,
        hash_password(body.password),
        name=body.name,
        phone_number=body.phone_number,
    )
    pair = tokens.issue(user)
    return _no_store(AuthResponse.build(pair, user).model_dump(mode="json"), status_code=201)


@limiter.limit(get_settings().login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Wrong password and unknown email produce the same bad_credentials error.
    """
    directory: IdentityDirectory = request.app.state.directory
    tokens: TokenService = request.app.state.token_service
    user = directory.authenticate(body.email, body.password)
    pair = tokens.issue(user)
    return _no_store(AuthResponse.build(pair, user).model_dump(mode="json"))


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Issue a new token pair. The presented refresh token is not consumed."""
    tokens: TokenService = request.app.state.token_service
    try:
        pair = tokens.refresh(body.refresh_token)
    except UserNotFound as exc:
        # A deleted subject is an authentication failure to the caller.
        raise InvalidToken() from exc
    return _no_store(TokenResponse.from_pair(pair).model_dump())


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    request: Request,
    body: RefreshRequest,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    """Revoke the given refresh token. Always succeeds (see TokenService.logout)."""
    tokens: TokenService = request.app.state.token_service
    tokens.logout(body.refresh_token, current_user.id)
    return MessageResponse(message="Logged out successfully.")


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.from_user(current_user)


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers. Empty list if none are set up."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers()]


def _oauth_client(request: Request, provider: str):
    parse_provider(provider)
    client = request.app.state.oauth.create_client(provider)
    if client is None:
        raise ValidationError(f"OAuth provider {provider!r} is not configured.")
    return client


@router.get("/auth/oauth/{provider}/login")
async def oauth_login(request: Request, provider: str):
    """Redirect the browser to the provider's authorization page."""
    client = _oauth_client(request, provider)
    redirect_uri = request.url_for("oauth_callback", provider=provider)
    return await client.authorize_redirect(request, str(redirect_uri))


@router.get("/auth/oauth/{provider}/callback", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Complete the OAuth flow and hand the token pair to the frontend.

    Any provider-side failure (denied consent, bad state, unverified email)
    sends the browser back to the frontend login page with error=oauth_failed.
    """
    frontend_url = get_settings().frontend_url.rstrip("/")
    client = _oauth_client(request, provider)
    try:
        token = await client.authorize_access_token(request)
        profile = await fetch_oauth_profile(client, parse_provider(provider), token)
    except (OAuthError, httpx.HTTPError, ValidationError) as exc:
        logger.warning("%s OAuth callback failed: %s", provider, exc)
        return RedirectResponse(f"{frontend_url}/login?error=oauth_failed", status_code=302)

    directory: IdentityDirectory = request.app.state.directory
    tokens: TokenService = request.app.state.token_service
    user = directory.upsert_oauth(profile)
    pair = tokens.issue(user)
    query = urlencode({"token": pair.access_token, "refresh": pair.refresh_token})
    resp = RedirectResponse(f"{frontend_url}/auth/callback?{query}", status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp
