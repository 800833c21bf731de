# airdlivers/core/engine/ports.py
from __future__ import annotations
from datetime import datetime
from typing import Protocol, Optional, Any, Iterable, Sequence
from airdlivers.core.engine.domain import (
    Action,
    AuthSession,
    Request,
    SessionState,
    UserControl,
)


# ============================================================================
# ASYNC PROTOCOLS (asyncpg implementations live in airdlivers.infra)
# ============================================================================

class AsyncRequestStore(Protocol):
    """
    Record store for sender and traveler requests.

    Filters are keyword equality tests on envelope fields (``request_id``,
    ``owner_id``, ``role``, ``status``, ``match_locked``,
    ``pending_match_with``, ``matched_with``) plus ``phone``.
    A value of ``None`` matches an empty field; a list/tuple/set matches any
    of its members.
    """

    async def insert(self, request: Request) -> None: ...

    async def find_one(self, **filters: Any) -> Optional[Request]: ...

    async def find_many(self, **filters: Any) -> list[Request]: ...

    async def update_fields(
        self,
        filters: dict[str, Any],
        set_fields: dict[str, Any] | None = None,
        unset_fields: Iterable[str] = (),
    ) -> int:
        """
        Set and unset fields on every matching record.

        Unset resets a field to its empty value (``None``, or ``False`` for
        ``match_locked``). Returns the number of records matched, so callers
        use the filter as a precondition for a conditional write.
        """
        ...

    async def lock_pair(self, my_id: str, other_id: str, locked_at: datetime) -> bool:
        """
        Lock two requests to each other in one atomic write.

        Succeeds only if both are Approved and unlocked, ``other`` is pending
        on ``my_id`` and ``my`` is pending on nothing or on ``other_id``.
        Returns False and changes nothing otherwise.
        """
        ...


class AsyncSessionStore(Protocol):
    async def get(self, actor_id: str) -> Optional[SessionState]: ...
    async def upsert(self, state: SessionState) -> None: ...
    async def delete(self, actor_id: str) -> None: ...
    async def cleanup_expired(self, ttl_seconds: int) -> int: ...


class AsyncUserControlStore(Protocol):
    async def get(self, user_id: str) -> Optional[UserControl]: ...
    async def upsert(self, control: UserControl) -> None: ...


class AsyncAuthSessionStore(Protocol):
    async def get(self, actor_id: str) -> Optional[AuthSession]: ...
    async def upsert(self, session: AuthSession) -> None: ...
    async def delete(self, actor_id: str) -> None: ...


class AsyncInboundEventRepository(Protocol):
    async def seen_or_mark(self, provider: str, event_id: str, actor_id: str) -> bool:
        """
        True  => event already seen (duplicate), skip processing
        False => first time seeing it, proceed with processing
        """
        ...


class Messenger(Protocol):
    """Outbound intents; the transport renders them."""

    async def send_text(self, chat_id: str, text: str) -> None: ...

    async def send_photo(self, chat_id: str, photo_ref: str, caption: str | None = None) -> None: ...

    async def send_with_actions(
        self,
        chat_id: str,
        text: str,
        actions: Sequence[Sequence[Action]],
    ) -> None: ...
