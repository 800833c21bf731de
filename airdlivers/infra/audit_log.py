# airdlivers/infra/audit_log.py
"""
Audit logging for moderator operations.

Approvals, rejections, visa requests, suspensions, chat terminations and
moderator logins go to a dedicated logger named "audit" so they can be
routed to a separate sink via logging configuration.
"""
from __future__ import annotations

import logging
from typing import Any

from airdlivers.infra.logging_config import mask_id

_audit_logger = logging.getLogger("audit")


def audit_event(
    action: str,
    *,
    actor_id: str | None = None,
    request_id: str | None = None,
    target_user: str | None = None,
    detail: str = "",
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Record an audit event.

    Args:
        action: Action name (e.g., "request.approve", "user.suspend")
        actor_id: Moderator performing the action
        request_id: Request affected (if applicable)
        target_user: User affected (if applicable)
        detail: Human-readable detail
        extra: Additional structured context
    """
    record = {
        "audit_action": action,
        "actor_id": actor_id or "",
        "request_id": request_id or "",
        "target_user": target_user or "",
        "detail": detail,
    }
    if extra:
        record.update(extra)

    _audit_logger.info(
        f"AUDIT: {action} actor={mask_id(actor_id)} request={request_id or '-'} "
        f"user={mask_id(target_user) if target_user else '-'} {detail}",
        extra=record,
    )
