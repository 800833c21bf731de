# airdlivers/core/marketplace/admin_auth.py
"""
Moderator identity.

A moderator is the configured super admin, or an actor holding a live
``AuthSession`` obtained through ``/admin`` + PIN. Sessions are kept in
the store, so they survive restarts and expire after a fixed number of
hours.
"""
from __future__ import annotations

import hmac
from datetime import timedelta
from typing import Optional

from airdlivers.core.engine.domain import AuthSession, utcnow
from airdlivers.core.engine.errors import NotAuthorizedError
from airdlivers.core.engine.ports import AsyncAuthSessionStore, Messenger
from airdlivers.core.marketplace.texts import get_text
from airdlivers.infra.audit_log import audit_event
from airdlivers.infra.logging_config import get_logger, mask_id

logger = get_logger(__name__)


class AdminAuth:
    def __init__(
        self,
        *,
        store: AsyncAuthSessionStore,
        messenger: Messenger,
        super_admin_id: str | None,
        admin_pin: str | None,
        session_ttl_hours: int = 12,
    ) -> None:
        self.store = store
        self.messenger = messenger
        self.super_admin_id = super_admin_id
        self.admin_pin = admin_pin
        self.session_ttl = timedelta(hours=session_ttl_hours)

    def is_super_admin(self, actor_id: str) -> bool:
        return bool(self.super_admin_id) and actor_id == self.super_admin_id

    async def _live_session(self, actor_id: str) -> Optional[AuthSession]:
        session = await self.store.get(actor_id)
        if session is None or not session.logged_in:
            return None
        if session.logged_in_at and utcnow() - session.logged_in_at > self.session_ttl:
            logger.info(f"Admin session expired: actor={mask_id(actor_id)}")
            await self.store.delete(actor_id)
            return None
        return session

    async def is_moderator(self, actor_id: str) -> bool:
        if self.is_super_admin(actor_id):
            return True
        return await self._live_session(actor_id) is not None

    async def require_moderator(self, actor_id: str) -> None:
        if not await self.is_moderator(actor_id):
            logger.warning(f"Moderator action refused: actor={mask_id(actor_id)}")
            raise NotAuthorizedError(get_text("not_authorized"))

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    async def begin_login(self, actor_id: str, chat_id: str) -> None:
        if self.is_super_admin(actor_id):
            await self.messenger.send_text(chat_id, get_text("pin_ok"))
            return
        if not self.admin_pin:
            raise NotAuthorizedError(get_text("not_authorized"))

        await self.store.upsert(AuthSession(actor_id=actor_id, awaiting_pin=True))
        await self.messenger.send_text(chat_id, get_text("ask_pin"))

    async def is_awaiting_pin(self, actor_id: str) -> bool:
        session = await self.store.get(actor_id)
        return bool(session and session.awaiting_pin)

    async def submit_pin(self, actor_id: str, chat_id: str, pin: str) -> bool:
        ok = bool(self.admin_pin) and hmac.compare_digest(pin.strip().encode(), self.admin_pin.encode())
        if not ok:
            await self.store.delete(actor_id)
            audit_event("admin.login_failed", actor_id=actor_id)
            await self.messenger.send_text(chat_id, get_text("pin_bad"))
            return False

        await self.store.upsert(AuthSession(actor_id=actor_id, logged_in=True, logged_in_at=utcnow()))
        audit_event("admin.login", actor_id=actor_id)
        await self.messenger.send_text(chat_id, get_text("pin_ok"))
        return True

    async def logout(self, actor_id: str, chat_id: str) -> None:
        await self.store.delete(actor_id)
        audit_event("admin.logout", actor_id=actor_id)
        await self.messenger.send_text(chat_id, get_text("logged_out"))

    # ------------------------------------------------------------------
    # Custom rejection reason
    # ------------------------------------------------------------------

    async def await_reason(self, actor_id: str, request_id: str) -> None:
        """Remember that the moderator's next text is a rejection reason."""
        session = await self.store.get(actor_id) or AuthSession(actor_id=actor_id)
        session.awaiting_reason_for = request_id
        await self.store.upsert(session)

    async def take_awaiting_reason(self, actor_id: str) -> Optional[str]:
        """Pop the request id a typed reason is expected for, if any."""
        session = await self.store.get(actor_id)
        if session is None or not session.awaiting_reason_for:
            return None
        request_id = session.awaiting_reason_for
        session.awaiting_reason_for = None
        await self.store.upsert(session)
        return request_id
