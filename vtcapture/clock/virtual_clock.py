"""
Session-scoped handle on the in-page virtual clock.

One VirtualClock belongs to one render session. The orchestrator threads
it through the frame loop; there is no process-wide clock.
"""

import logging
from typing import Any

from vtcapture.clock.script import (
    GET_TIME_EXPRESSION,
    GO_TO_EXPRESSION,
    VIRTUAL_CLOCK_SCRIPT,
)
from vtcapture.errors import EngineCommunicationError

logger = logging.getLogger(__name__)


class VirtualClock:
    """
    Drives the virtual clock installed in a render session.

    Time only moves forward. A target earlier than the last known time is
    rejected with a warning and no round-trip is made.

    Example:
        clock = VirtualClock(session)
        await clock.install()          # before navigation
        await session.navigate(url)
        await clock.go_to(33.333)
        assert clock.current_time == 33.333
    """

    def __init__(self, session):
        """
        Initialize the clock handle.

        Args:
            session: Render session exposing add_init_script() and evaluate()
        """
        self._session = session
        self._current_time = 0.0
        self._installed = False
        self.callbacks_fired = 0
        self.callback_errors = 0

    @property
    def current_time(self) -> float:
        """Last virtual time confirmed by the page, in ms."""
        return self._current_time

    @property
    def installed(self) -> bool:
        return self._installed

    async def install(self) -> None:
        """Register the clock override module. Must run before navigation."""
        if self._installed:
            return
        await self._session.add_init_script(VIRTUAL_CLOCK_SCRIPT)
        self._installed = True
        logger.debug("[CLOCK] Virtual clock registered as init script")

    async def go_to(self, target_ms: float) -> bool:
        """
        Step the page's clock forward to target_ms.

        Returns:
            True if the clock moved (or stayed) at target_ms, False if the
            target was rejected for being in the past

        Raises:
            EngineCommunicationError: If the page round-trip fails or the
                clock is missing from the page
        """
        if target_ms < self._current_time:
            logger.warning(
                f"[CLOCK] Ignoring backward step to {target_ms:.3f}ms "
                f"(current {self._current_time:.3f}ms)"
            )
            return False
        result = await self._session.evaluate(GO_TO_EXPRESSION, target_ms)
        return self._apply_step(result, target_ms)

    async def advance(self, delta_ms: float) -> bool:
        """
        Step forward by delta_ms from the last confirmed time.

        Sent to the page as an absolute target, so a retried round-trip
        cannot step twice.
        """
        if delta_ms < 0:
            logger.warning(f"[CLOCK] Ignoring negative advance of {delta_ms}ms")
            return False
        return await self.go_to(self._current_time + delta_ms)

    async def get_time(self) -> float:
        """Read the current virtual time from the page."""
        value = await self._session.evaluate(GET_TIME_EXPRESSION)
        if value is None:
            raise EngineCommunicationError("Virtual clock is not installed in the page")
        self._current_time = float(value)
        return self._current_time

    def _apply_step(self, result: Any, target_ms: float) -> bool:
        if result is None:
            raise EngineCommunicationError(
                f"Virtual clock is not installed in the page (step to {target_ms:.3f}ms)"
            )
        page_time = float(result.get("time", self._current_time))
        if not result.get("ok", False):
            logger.warning(
                f"[CLOCK] Page rejected step to {target_ms:.3f}ms (page time {page_time:.3f}ms)"
            )
            self._current_time = max(self._current_time, page_time)
            return False

        self._current_time = page_time
        fired = int(result.get("fired", 0))
        errors = int(result.get("errors", 0))
        self.callbacks_fired += fired
        self.callback_errors += errors
        if errors:
            logger.warning(
                f"[CLOCK] {errors} page callback(s) threw at {page_time:.3f}ms; continuing"
            )
        return True
