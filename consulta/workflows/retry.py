"""Bounded re-run of a read-decide-write cycle that lost a version race."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import TypeVar

from consulta.errors import ConcurrencyConflict
from consulta.events import emit
from consulta.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_on_conflict(
    operation: Callable[[], Awaitable[T]],
    attempts: int,
    appointment_id: uuid.UUID,
    source_module: str,
) -> T:
    """Run ``operation`` until it stops raising ConcurrencyConflict.

    ``operation`` must re-read the appointment itself on every call. After
    ``attempts`` lost races the conflict is re-raised to the caller.
    """
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except ConcurrencyConflict:
            if attempt >= attempts:
                logger.warning("Giving up on appointment %s after %d conflicting writes", appointment_id, attempt)
                await emit(
                    SystemEvent(
                        event_type=EventType.APPOINTMENT_CONFLICT,
                        appointment_id=appointment_id,
                        data={"attempts": attempt},
                        source_module=source_module,
                    )
                )
                raise
            logger.info("Concurrent write on appointment %s, retrying (%d/%d)", appointment_id, attempt, attempts)

    msg = f"attempts must be >= 1, got {attempts}"
    raise ValueError(msg)
