# worker_main.py
"""
Expiry sweeper.

Reads already ignore expired rows, so this process only keeps the tables
small and settles stale presentations:
  - wizard sessions past expires_at are deleted
  - pending presentations past expires_at are marked expired

Run it next to server.py (one instance is enough; both sweeps are plain
conditional statements and safe to run concurrently).
"""

import asyncio
import logging
from typing import Any, List, Optional

from avatar_agent.app_config import AppConfig
from avatar_agent.db_connection import DbConnection
from avatar_agent.presentation_tracker import PresentationTracker
from avatar_agent.wizard_session_store import WizardSessionStore

logger = logging.getLogger("avatar_agent.worker")


class ExpiryApp:
    def __init__(self, sessions: WizardSessionStore, presentations: PresentationTracker) -> None:
        self.sessions = sessions
        self.presentations = presentations

    def sweep(self) -> dict:
        removed = self.sessions.delete_expired()
        if removed:
            logger.info("Session sweep: removed %d expired wizard sessions", removed)
        expired = self.presentations.expire_pending()
        if expired:
            logger.info("Presentation sweep: expired %d pending presentations", expired)
        return {"sessions_removed": removed, "presentations_expired": expired}


class AppHost:
    def __init__(self, apps: List[Any]):
        self.apps = list(apps or [])

    def sweep(self) -> None:
        for app in self.apps:
            fn = getattr(app, "sweep", None)
            if callable(fn):
                fn()


class AsyncGuard:
    def __init__(self, host: AppHost, poll_interval: float = 60.0):
        self.host = host
        self.poll_interval = poll_interval

    async def run_once(self) -> None:
        try:
            await asyncio.to_thread(self.host.sweep)
        except Exception:
            # a failed sweep is retried on the next tick
            logger.exception("Sweep failed")

    async def run(self, iterations: Optional[int] = None) -> None:
        logger.info("AsyncGuard running - sweep every %.0fs", self.poll_interval)

        done = 0
        while iterations is None or done < iterations:
            await self.run_once()
            done += 1
            await asyncio.sleep(self.poll_interval)


def main() -> None:
    config = AppConfig()
    db = DbConnection(config)
    db.create_all()
    session_factory = db.build_db_session_factory()

    apps = [
        ExpiryApp(WizardSessionStore(session_factory), PresentationTracker(session_factory)),
    ]
    guard = AsyncGuard(AppHost(apps), poll_interval=config.SWEEP_INTERVAL_SECONDS)
    try:
        asyncio.run(guard.run())
    finally:
        db.dispose()


if __name__ == "__main__":
    main()
