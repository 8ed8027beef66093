import logging
from typing import Any, Awaitable, Callable

from chatsync.core.events import EventBus
from chatsync.schemas.friendship import RelationshipState
from chatsync.schemas.result import RelationshipMutationResult, SyncError, SyncErrorKind
from chatsync.services.relationship import RelationshipResolver

logger = logging.getLogger(__name__)

RemoteWrite = Callable[[], Awaitable[Any]]


class OptimisticMutation:
    """Applies a relationship change locally before its remote write and rolls
    it back when the write fails."""

    def __init__(self, resolver: RelationshipResolver, events: EventBus):
        self.resolver = resolver
        self.events = events

    async def run(
        self,
        operation: str,
        user_id: str,
        prior_state: RelationshipState,
        new_state: RelationshipState,
        remote_write: RemoteWrite
    ) -> RelationshipMutationResult:
        """Run remote_write with new_state shown optimistically.

        prior_state is the state the action expects to start from and the state
        restored on failure. After a successful write new_state is kept until the
        streams confirm it. If the local state is not prior_state, or another
        mutation for the same user is in flight, the action is rejected without
        touching the store.
        """
        if self.resolver.current_user_id is None:
            return self._failure(
                operation, user_id, prior_state, prior_state,
                SyncErrorKind.NOT_AUTHENTICATED, "No signed in user"
            )

        current = self.resolver.state_for(user_id)
        if self.resolver.has_pending_mutation(user_id) or current != prior_state:
            logger.info(f"Rejected {operation} for {user_id}: state is {current.value}, expected {prior_state.value}")
            return self._failure(
                operation, user_id, prior_state, current,
                SyncErrorKind.CONFLICT,
                f"Relationship with {user_id} is {current.value}, expected {prior_state.value}"
            )

        await self.resolver.apply_optimistic(user_id, new_state)
        try:
            value = await remote_write()
        except Exception as e:
            await self.resolver.release_optimistic(user_id, restore=prior_state)
            error = SyncError.from_exception(e, operation)
            await self.events.report(error)
            return RelationshipMutationResult(
                error=error,
                user_id=user_id,
                previous_state=prior_state,
                state=prior_state
            )

        await self.resolver.confirm_optimistic(user_id, prior_state)
        return RelationshipMutationResult(
            value=value,
            user_id=user_id,
            previous_state=prior_state,
            state=new_state
        )

    def _failure(
        self,
        operation: str,
        user_id: str,
        prior_state: RelationshipState,
        state: RelationshipState,
        kind: SyncErrorKind,
        message: str
    ) -> RelationshipMutationResult:
        return RelationshipMutationResult(
            error=SyncError(kind=kind, message=message, operation=operation),
            user_id=user_id,
            previous_state=prior_state,
            state=state
        )
