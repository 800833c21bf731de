# airdlivers/core/engine/tokens.py
"""
Callback tokens carried by inline buttons.

Format: ``domain:subaction[:arg...]``, colon-delimited and at most 64 bytes
(the Telegram ``callback_data`` limit). Request ids and user ids never
contain colons.
"""
from __future__ import annotations

from dataclasses import dataclass

MAX_TOKEN_BYTES = 64

# domain -> allowed subactions and number of args
_SCHEMAS: dict[str, dict[str, int]] = {
    "flow": {"sender": 0, "traveler": 0, "tracking": 0, "help": 0},
    "cat": {"*": 0},
    "submit": {"yes": 0, "no": 0},
    "mod": {"approve": 1, "reject": 1, "visa": 1, "reason": 2},
    "match": {"conf": 2, "skip": 2},
    "ctl": {"term": 1},
}


class TokenError(ValueError):
    """Raised for malformed or unknown callback tokens."""


@dataclass(frozen=True)
class Token:
    domain: str
    action: str
    args: tuple[str, ...] = ()

    def arg(self, index: int) -> str:
        return self.args[index]


def build(domain: str, action: str, *args: str) -> str:
    parts = [domain, action, *args]
    for part in parts:
        if not part or ":" in part:
            raise TokenError(f"invalid token part: {part!r}")
    token = ":".join(parts)
    if len(token.encode("utf-8")) > MAX_TOKEN_BYTES:
        raise TokenError(f"token too long: {token!r}")
    return token


def parse(raw: str) -> Token:
    """Parse and validate a token; raises TokenError if it matches no schema."""
    if not raw or len(raw.encode("utf-8")) > MAX_TOKEN_BYTES:
        raise TokenError("empty or oversized token")

    parts = raw.split(":")
    if len(parts) < 2:
        raise TokenError(f"malformed token: {raw!r}")

    domain, action, args = parts[0], parts[1], tuple(parts[2:])
    schema = _SCHEMAS.get(domain)
    if schema is None:
        raise TokenError(f"unknown domain: {domain!r}")

    expected = schema.get(action, schema.get("*"))
    if expected is None:
        raise TokenError(f"unknown action: {raw!r}")
    if len(args) != expected or any(not a for a in args):
        raise TokenError(f"wrong argument count: {raw!r}")

    return Token(domain=domain, action=action, args=args)


# ----------------------------------------------------------------------------
# Builders used by the services
# ----------------------------------------------------------------------------

def flow(kind: str) -> str:
    return build("flow", kind)


def category(name: str) -> str:
    return build("cat", name)


def submit(confirm: bool) -> str:
    return build("submit", "yes" if confirm else "no")


def moderate(action: str, request_id: str) -> str:
    return build("mod", action, request_id)


def reject_reason(request_id: str, reason_key: str) -> str:
    return build("mod", "reason", request_id, reason_key)


def match_confirm(my_id: str, other_id: str) -> str:
    return build("match", "conf", my_id, other_id)


def match_skip(my_id: str, other_id: str) -> str:
    return build("match", "skip", my_id, other_id)


def terminate(user_id: str) -> str:
    return build("ctl", "term", user_id)
