"""
Request-scoped dependencies for the v1 API.

Long-lived collaborators are built once in the application lifespan and
stored on app.state; these helpers only look them up.
"""
from typing import Optional

from fastapi import Cookie, Header, Request

from apps.orchestrator.graph import SearchOrchestrator
from shared.schemas import Principal
from src.services.analytics import AnalyticsService
from src.services.auth import AUTH_COOKIE, TokenVerifier, extract_bearer


def get_orchestrator(request: Request) -> SearchOrchestrator:
    return request.app.state.orchestrator


def get_analytics_service(request: Request) -> AnalyticsService:
    return request.app.state.analytics


def get_principal(
    request: Request,
    authorization: Optional[str] = Header(None),
    auth_token: Optional[str] = Cookie(None, alias=AUTH_COOKIE),
) -> Principal:
    """Resolve the caller from a bearer token, falling back to the session cookie."""
    verifier: TokenVerifier = request.app.state.token_verifier
    token = extract_bearer(authorization) or auth_token
    return verifier.resolve(token)
