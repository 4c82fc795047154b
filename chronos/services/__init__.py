"""
Identity Services Package.

Session lifecycle, the auth-flow state machine, profile resolution,
error classification and activity logging.

The ``create_services()`` factory wires every service together, returning a
typed dict that the application layer can consume without knowing the
internal dependency graph.
"""

from __future__ import annotations

from typing import TypedDict

from chronos.config import AppConfig
from chronos.identity_provider import IdentityProvider
from chronos.logger import get_logger
from chronos.services.activity_service import ActivityService
from chronos.services.auth_flow import AuthFlowController, InvalidTransitionError
from chronos.services.profile_resolver import ProfileResolver
from chronos.services.session_controller import SessionController


class ServiceContainer(TypedDict):
    """Typed container for the identity services."""

    profile_resolver: ProfileResolver
    session_controller: SessionController
    auth_flow: AuthFlowController
    activity_service: ActivityService


def create_services(idp: IdentityProvider, config: AppConfig) -> ServiceContainer:
    """
    Wire all services together.

    The auth flow is attached to the session controller so provider
    password-recovery events force it into the reset step.  Call
    ``session_controller.initialize()`` from inside the event loop once
    the container is built.

    Args:
        idp: Identity provider adapter (online or offline).
        config: Application configuration.

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
    """
    # ------------------------------------------------------------------
    # 1. Leaf services
    # ------------------------------------------------------------------
    profile_resolver = ProfileResolver(idp=idp, logger=get_logger("profiles"))

    # ------------------------------------------------------------------
    # 2. Session owner
    # ------------------------------------------------------------------
    session_controller = SessionController(
        idp=idp,
        profile_resolver=profile_resolver,
        logger=get_logger("session"),
        safety_timeout_s=config.SESSION_SAFETY_TIMEOUT_S,
    )

    # ------------------------------------------------------------------
    # 3. Consumers of the session
    # ------------------------------------------------------------------
    auth_flow = AuthFlowController(
        idp=idp,
        logger=get_logger("auth_flow"),
        redirect_url=config.redirect_url,
        cooldown_s=config.AUTH_COOLDOWN_S,
        min_password_length=config.MIN_PASSWORD_LENGTH,
        min_full_name_length=config.MIN_FULL_NAME_LENGTH,
        recovery_code_length=config.RECOVERY_CODE_LENGTH,
    )
    auth_flow.attach(session_controller)

    activity_service = ActivityService(
        idp=idp,
        session=session_controller,
        logger=get_logger("activity"),
        min_duration_ms=config.MIN_LOGGED_DURATION_MS,
    )

    return ServiceContainer(
        profile_resolver=profile_resolver,
        session_controller=session_controller,
        auth_flow=auth_flow,
        activity_service=activity_service,
    )


__all__ = [
    "ActivityService",
    "AuthFlowController",
    "InvalidTransitionError",
    "ProfileResolver",
    "ServiceContainer",
    "SessionController",
    "create_services",
]
