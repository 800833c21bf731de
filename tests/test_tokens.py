# tests/test_tokens.py
"""Tests for callback tokens"""
import pytest

from airdlivers.core.engine import tokens
from airdlivers.core.engine.tokens import Token, TokenError


class TestBuild:
    def test_builders(self):
        assert tokens.flow("sender") == "flow:sender"
        assert tokens.submit(True) == "submit:yes"
        assert tokens.submit(False) == "submit:no"
        assert tokens.moderate("approve", "snd260110093000123") == "mod:approve:snd260110093000123"
        assert tokens.reject_reason("trv1", "docs") == "mod:reason:trv1:docs"
        assert tokens.match_confirm("snd1", "trv1") == "match:conf:snd1:trv1"
        assert tokens.terminate("4242") == "ctl:term:4242"

    def test_rejects_colons_and_empty_parts(self):
        with pytest.raises(TokenError):
            tokens.build("mod", "approve", "a:b")
        with pytest.raises(TokenError):
            tokens.build("mod", "approve", "")

    def test_longest_match_token_fits_telegram_limit(self):
        token = tokens.match_confirm("snd260110093000123", "trv260110093000124")
        assert len(token.encode()) <= tokens.MAX_TOKEN_BYTES

    def test_oversized_token(self):
        with pytest.raises(TokenError):
            tokens.build("ctl", "term", "x" * 80)


class TestParse:
    def test_parse_with_args(self):
        token = tokens.parse("match:conf:snd1:trv1")
        assert token == Token("match", "conf", ("snd1", "trv1"))
        assert token.arg(1) == "trv1"

    def test_category_accepts_any_key(self):
        assert tokens.parse("cat:Gold") == Token("cat", "Gold")

    @pytest.mark.parametrize("raw", [
        "",
        "flow",
        "bogus:thing",
        "flow:bogus",
        "mod:approve",
        "mod:approve:snd1:extra",
        "mod:approve:",
        "match:conf:snd1",
        "x" * 65,
    ])
    def test_invalid(self, raw):
        with pytest.raises(TokenError):
            tokens.parse(raw)
