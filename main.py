"""
Chronos Identity Core Entry Point.

Bootstraps the dependency graph via constructor injection, restores the
persisted Supabase session (if any), reports who is signed in, and shuts
down cleanly.  Every subsystem is wired here; there are no module-level
globals.

Usage::

    python main.py
"""

from __future__ import annotations

import asyncio
import sys

from chronos.config import get_config
from chronos.identity_provider import SupabaseIdentityProvider
from chronos.logger import StructuredLogger, get_logger
from chronos.services import create_services


async def run() -> None:
    """Wire dependencies, wait for the session to settle, then tear down."""
    logger: StructuredLogger = get_logger("main")
    logger.info("Starting Chronos identity core...")

    # ------------------------------------------------------------------
    # 1. Configuration (from .env / environment variables)
    # ------------------------------------------------------------------
    config = get_config()

    # ------------------------------------------------------------------
    # 2. Identity provider (offline mode when credentials are missing)
    # ------------------------------------------------------------------
    idp = await SupabaseIdentityProvider.connect(
        supabase_url=config.SUPABASE_URL,
        supabase_key=config.SUPABASE_ANON_KEY.get_secret_value(),
        logger=StructuredLogger(name="idp"),
    )

    # ------------------------------------------------------------------
    # 3. Service container (single composition root)
    # ------------------------------------------------------------------
    services = create_services(idp=idp, config=config)
    session = services["session_controller"]

    # ------------------------------------------------------------------
    # 4. Session lifecycle
    # ------------------------------------------------------------------
    session.initialize()
    try:
        await session.wait_until_ready()
        user = session.user
        if user.is_logged_in:
            logger.info(
                "Signed in as %s <%s>.", user.name, user.email,
                extra={"user_id": user.id},
            )
        else:
            logger.info("No active session; sign-in required.")
    finally:
        session.teardown()
        logger.info("Chronos identity core shut down.")


def main() -> None:
    """Application entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        sys.stderr.write(f"FATAL: {type(exc).__name__}: {exc}\n")
        sys.exit(1)
