# airdlivers/core/marketplace/__init__.py
"""
Marketplace services: forms, moderation, matching, suspension, relay.

Each service takes its stores and the messenger as keyword arguments;
``airdlivers.core.engine.use_cases.build_engine`` wires them together.
"""
