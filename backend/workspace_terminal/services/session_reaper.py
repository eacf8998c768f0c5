"""
Session Reaper - automatic cleanup of abandoned terminal sessions

Runs in the background and, every REAPER_INTERVAL, evicts sessions whose
last activity is older than IDLE_TIMEOUT:
1. The session's live process (if any) receives SIGTERM
2. The session is removed from the registry

A session that is idle but still wanted looks exactly like an abandoned one;
both are reaped. A later create() for the same key starts a fresh session.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from workspace_terminal.core.config import settings
from workspace_terminal.core.logging_config import logger
from workspace_terminal.modules.terminal.session_registry import SessionRegistry


class SessionReaper:
    """
    Background ticker that evicts idle sessions from a SessionRegistry.

    Every eviction goes through the session's process lock, exactly like
    request handlers, so a session in use is never torn down mid-operation.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        interval_seconds: Optional[float] = None,
        idle_timeout_seconds: Optional[float] = None,
    ):
        self.registry = registry
        self.interval = timedelta(
            seconds=interval_seconds if interval_seconds is not None
            else settings.TERMINAL_REAPER_INTERVAL_SECONDS
        )
        self.idle_timeout = timedelta(
            seconds=idle_timeout_seconds if idle_timeout_seconds is not None
            else settings.TERMINAL_IDLE_TIMEOUT_SECONDS
        )

        self.running = False
        self._task: Optional[asyncio.Task] = None

        self.stats = {
            "total_reaped": 0,
            "sweeps": 0,
            "last_sweep": None,
        }

    async def start(self):
        """Start the background reaper"""
        if self.running:
            logger.warning("[SessionReaper] Already running")
            return

        self.running = True
        self._task = asyncio.create_task(self._reaper_loop())
        logger.info(f"[SessionReaper] Started - Idle timeout: {self.idle_timeout}, Interval: {self.interval}")

    async def stop(self):
        """Stop the reaper and wait for the loop to finish"""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("[SessionReaper] Stopped")

    async def _reaper_loop(self):
        """Main reaper loop"""
        while self.running:
            await asyncio.sleep(self.interval.total_seconds())
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"[SessionReaper] Error in reaper loop: {e}", exc_info=True)

    async def sweep(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Evict every session idle for longer than the timeout.

        Args:
            now: Reference time (defaults to datetime.now())

        Returns:
            Dict with reaped session ids and errors
        """
        now = now or datetime.now()
        results = {
            "reaped": [],
            "errors": [],
        }

        for session in self.registry.list_sessions():
            if not session.is_idle(now, self.idle_timeout):
                continue

            try:
                if await self.registry.evict_if_idle(session, self.idle_timeout, now=now):
                    results["reaped"].append(session.id)
            except Exception as e:
                logger.error(f"[SessionReaper] Error reaping {session.id}: {e}", exc_info=True)
                results["errors"].append({"id": session.id, "error": str(e)})

        self.stats["total_reaped"] += len(results["reaped"])
        self.stats["sweeps"] += 1
        self.stats["last_sweep"] = now.isoformat()

        if results["reaped"]:
            logger.info(
                f"[SessionReaper] Sweep complete: {len(results['reaped'])} reaped, "
                f"{len(self.registry)} remaining"
            )

        return results

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "running": self.running,
            "interval_seconds": self.interval.total_seconds(),
            "idle_timeout_seconds": self.idle_timeout.total_seconds(),
            **self.registry.get_stats(),
        }
