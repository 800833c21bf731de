# airdlivers/core/engine/errors.py
"""
Typed domain errors for the marketplace services.

Each error carries the short, user-facing text that answers the actor.
The dispatch engine catches ``MarketplaceError`` subtypes and replies with
``detail`` without embedding business logic in the routing code; anything
else is an internal failure.
"""
from __future__ import annotations


class MarketplaceError(Exception):
    """Base class for all marketplace domain errors."""

    def __init__(self, detail: str = "Something went wrong. Please try again."):
        self.detail = detail
        super().__init__(detail)


class ValidationError(MarketplaceError):
    """Input rejected by a validator; the current step is re-prompted."""


class NotAuthorizedError(MarketplaceError):
    """Actor may not perform this action. Never reveals whether the target exists."""

    def __init__(self, detail: str = "⛔ Not authorized."):
        super().__init__(detail)


class StaleReferenceError(MarketplaceError):
    """Target vanished, was rejected, or was locked elsewhere."""

    def __init__(self, detail: str = "⚠️ This request is no longer available."):
        super().__init__(detail)


class ConflictError(MarketplaceError):
    """Action conflicts with the current state (already matched, already decided)."""


class DuplicateRequestIdError(Exception):
    """Store refused an insert because the request id already exists."""
