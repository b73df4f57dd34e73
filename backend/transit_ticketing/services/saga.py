"""
Compensating actions for writes that span both stores.

There is no coordinator between Redis and the database. When a later step
fails, the actions registered so far are run newest-first. A compensation
that fails is logged under its own event so the orphaned ephemeral record
it leaves behind can be found; the orphan is still bounded by its TTL.
"""

from typing import Awaitable, Callable

from transit_ticketing.core.exceptions import TicketingError
from transit_ticketing.core.logging import get_logger
from transit_ticketing.core.metrics import record_compensation

logger = get_logger(__name__)


class CompensationLog:
    def __init__(self, saga: str, **context):
        self.saga = saga
        self.context = context
        self._actions: list[tuple[str, Callable[[], Awaitable[None]]]] = []

    def add(self, name: str, action: Callable[[], Awaitable[None]]) -> None:
        self._actions.append((name, action))

    def __len__(self) -> int:
        return len(self._actions)

    async def compensate(self) -> bool:
        """Run every registered action in reverse order. Returns True if all succeeded."""
        all_succeeded = True
        while self._actions:
            name, action = self._actions.pop()
            try:
                await action()
            except TicketingError as e:
                all_succeeded = False
                record_compensation(name, succeeded=False)
                logger.error(
                    "ticket_compensation_failed",
                    saga=self.saga,
                    action=name,
                    error=e.message,
                    **self.context,
                )
            else:
                record_compensation(name, succeeded=True)
                logger.info("ticket_compensation_applied", saga=self.saga, action=name, **self.context)
        return all_succeeded
