from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)

LEDGER_CHANGE_REASON_USAGE_RECORDED = "usage_recorded"
LEDGER_CHANGE_REASON_USAGE_REFUNDED = "usage_refunded"
LEDGER_CHANGE_REASON_USAGE_RESET = "usage_reset"
LEDGER_CHANGE_REASON_PURCHASE_APPLIED = "purchase_applied"


@dataclass(frozen=True, slots=True)
class LedgerChanged:
    user_id: str
    reason: str
    reference: str | None = None


LedgerChangedHandler = Callable[[LedgerChanged], Awaitable[None]]


class LedgerEventBus:
    """In-process fan-out of ledger changes to snapshot readers."""

    def __init__(self) -> None:
        self._handlers: list[LedgerChangedHandler] = []

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    def subscribe(self, handler: LedgerChangedHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def publish(self, event: LedgerChanged) -> None:
        handlers = list(self._handlers)
        if not handlers:
            return

        results = await asyncio.gather(
            *(handler(event) for handler in handlers),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error(
                    "ledger_event_handler_failed",
                    user_id=event.user_id,
                    reason=event.reason,
                    reference=event.reference,
                    error_type=type(result).__name__,
                    error=str(result),
                )
