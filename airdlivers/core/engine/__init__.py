# airdlivers/core/engine/__init__.py
"""
Core engine -- provider-agnostic domain logic.

This package contains the domain models, abstract protocols (ports),
typed errors and callback tokens. The dispatcher (MarketplaceEngine) lives
in ``airdlivers.core.engine.use_cases`` and is imported from there, since
it depends on the marketplace services built on top of this package.

Canonical imports:
    from airdlivers.core.engine.domain import Request, InboundEvent
    from airdlivers.core.engine.ports import AsyncRequestStore
    from airdlivers.core.engine.use_cases import MarketplaceEngine
"""
from airdlivers.core.engine.domain import (  # noqa: F401
    Role,
    RequestStatus,
    EventKind,
    FlowKind,
    SenderDetails,
    TravelerDetails,
    Request,
    UserControl,
    AuthSession,
    SessionState,
    InboundEvent,
    Action,
)
from airdlivers.core.engine.ports import (  # noqa: F401
    AsyncRequestStore,
    AsyncSessionStore,
    AsyncUserControlStore,
    AsyncAuthSessionStore,
    AsyncInboundEventRepository,
    Messenger,
)
from airdlivers.core.engine.errors import (  # noqa: F401
    MarketplaceError,
    ValidationError,
    NotAuthorizedError,
    StaleReferenceError,
    ConflictError,
)
