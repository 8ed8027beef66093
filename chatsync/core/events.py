import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Type

from chatsync.schemas.friendship import RelationshipState
from chatsync.schemas.result import OperationResult, SyncError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationReadReset:
    conversation_id: str
    user_id: str


@dataclass(frozen=True)
class RelationshipStateChanged:
    user_id: str
    state: RelationshipState


@dataclass(frozen=True)
class SyncErrorReported:
    error: SyncError


class Unsubscribe:
    """Handle returned by EventBus.subscribe"""

    def __init__(self, bus: "EventBus", event_type: Type, handler: Callable):
        self._bus = bus
        self._event_type = event_type
        self._handler = handler

    def cancel(self):
        self._bus._remove(self._event_type, self._handler)


class EventBus:
    """Routes typed events to every component subscribed to that event type"""

    def __init__(self):
        # event type -> handlers
        self.handlers: Dict[Type, List[Callable[[Any], Any]]] = {}

    def subscribe(self, event_type: Type, handler: Callable[[Any], Any]) -> Unsubscribe:
        self.handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Subscribed {handler} to {event_type.__name__}")
        return Unsubscribe(self, event_type, handler)

    async def publish(self, event: Any) -> int:
        """Deliver an event to all its handlers, returning how many succeeded"""
        handlers = list(self.handlers.get(type(event), []))
        if not handlers:
            logger.debug(f"No handlers for {type(event).__name__}")
            return 0

        results = await asyncio.gather(
            *(self._invoke(handler, event) for handler in handlers),
            return_exceptions=True
        )

        delivered = 0
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(f"Handler {handler} failed on {type(event).__name__}: {result}")
            else:
                delivered += 1
        return delivered

    async def report(self, error: SyncError) -> None:
        logger.warning(f"Sync error in {error.operation}: [{error.kind.value}] {error.message}")
        await self.publish(SyncErrorReported(error=error))

    async def guard(self, operation: str, call: Callable[[], Awaitable[Any]]) -> OperationResult:
        """Await call, turning any failure into a reported error result"""
        try:
            return OperationResult.success(await call())
        except Exception as e:
            error = SyncError.from_exception(e, operation)
            await self.report(error)
            return OperationResult(error=error)

    async def _invoke(self, handler: Callable, event: Any):
        result = handler(event)
        if inspect.isawaitable(result):
            await result

    def _remove(self, event_type: Type, handler: Callable):
        handlers = self.handlers.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self.handlers[event_type]
