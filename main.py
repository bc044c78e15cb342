"""
Patient/Nurse Session Core Entry Point.

Bootstraps the dependency graph via constructor injection, initialises
the encrypted secure store and runs Session Bootstrap once, reporting
where a cold start would land.  A UI shell would supply its own
``Navigator`` and biometric hardware adapter in place of the headless
ones used here.

Usage::

    python main.py
"""

from __future__ import annotations

import asyncio
import atexit
import sys

from app.config import AppConfig, get_config
from app.database import DatabaseManager
from app.logger import StructuredLogger, get_logger
from app.models.auth_models import BootstrapOutcome
from app.schema import initialize_schema
from app.services import create_services
from app.services.biometric_gatekeeper import UnavailableBiometricHardware
from app.services.navigation import LoggingNavigator
from app.services.secure_store import EncryptedSecureStore


async def run(config: AppConfig, db: DatabaseManager) -> BootstrapOutcome:
    """Wire the services over *db* and run the cold-start decision."""
    store = EncryptedSecureStore(
        db=db,
        logger=StructuredLogger(name="secure_store"),
        salt_path=config.SECURE_STORE_SALT_PATH,
    )
    navigator = LoggingNavigator(logger=get_logger("navigation"))

    services = create_services(
        config=config,
        store=store,
        hardware=UnavailableBiometricHardware(),
        navigator=navigator,
    )
    try:
        return await services["session_bootstrap"].run()
    finally:
        await services["http"].aclose()


def main() -> None:
    """Application entry point."""
    logger: StructuredLogger = get_logger("main")
    logger.info("Starting session core...")

    # ------------------------------------------------------------------
    # 1. Configuration (from .env / environment variables)
    # ------------------------------------------------------------------
    config = get_config()

    # ------------------------------------------------------------------
    # 2. Database + schema (idempotent)
    # ------------------------------------------------------------------
    db = DatabaseManager(
        sqlite_path=config.SECURE_STORE_PATH,
        logger=StructuredLogger(name="database"),
    )
    # DatabaseManager.close() is idempotent, so this is only a fallback
    # for exits that skip the finally block below.
    atexit.register(db.close)
    initialize_schema(db.sqlite, StructuredLogger(name="schema"))

    # ------------------------------------------------------------------
    # 3. Cold start
    # ------------------------------------------------------------------
    try:
        outcome = asyncio.run(run(config, db))
        logger.info(
            "Bootstrap landed on %s.",
            outcome.landing,
            extra={"role": str(outcome.role) if outcome.role else "none", "reason": outcome.reason},
        )
    finally:
        db.close()
        logger.info("Session core shut down.")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        sys.stderr.write(f"FATAL: {type(exc).__name__}: {exc}\n")
        sys.exit(1)
