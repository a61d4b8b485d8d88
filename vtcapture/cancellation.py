"""
Cooperative Job Cancellation

A capture job checks its CancellationToken between frames. Cancelling
stops the frame loop at the next boundary; frames already produced are
kept and the encoder is finalized normally.
"""

import signal
import asyncio
import logging
from typing import Optional
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Cancellation flag shared between a job and whoever may stop it.

    Example:
        token = CancellationToken()
        token.install_signal_handlers()   # Ctrl-C ends the job gracefully
        stats = await orchestrator.run(config)  # orchestrator built with token
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None
        self.cancelled_at: Optional[str] = None
        self._signals: list[signal.Signals] = []

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled"):
        """Request cancellation. Later calls keep the first reason."""
        if self._event.is_set():
            return
        self.reason = reason
        self.cancelled_at = datetime.now(timezone.utc).isoformat()
        self._event.set()
        logger.info(f"[CANCEL] Cancellation requested: {reason}")

    async def wait(self):
        """Wait until cancellation is requested"""
        await self._event.wait()

    def install_signal_handlers(self) -> bool:
        """
        Cancel on SIGTERM/SIGINT.

        Returns:
            False if the running loop does not support signal handlers
        """
        loop = asyncio.get_running_loop()
        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: self.cancel(f"received {s.name}"))
                self._signals.append(sig)
        except (NotImplementedError, RuntimeError) as e:
            # Signal handlers may not work in all environments
            logger.warning(f"[CANCEL] Could not register signal handlers: {e}")
            return False
        logger.debug("[CANCEL] Signal handlers registered")
        return True

    def remove_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in self._signals:
            loop.remove_signal_handler(sig)
        self._signals.clear()
