# tests/conftest.py
"""Pytest configuration and fixtures"""
import pytest
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from airdlivers.infra.metrics import get_metrics_collector  # noqa: E402


@pytest.fixture(autouse=True)
def reset_metrics():
    """Each test starts with empty counters"""
    get_metrics_collector().reset()
    yield


@pytest.fixture
def sample_telegram_message():
    """Sample Telegram text message Update"""
    return {
        "update_id": 100200300,
        "message": {
            "message_id": 11,
            "from": {"id": 4242, "first_name": "Asha", "last_name": "Rao", "username": "asha"},
            "chat": {"id": 4242, "type": "private"},
            "date": 1768037400,
            "text": "/start",
        },
    }


@pytest.fixture
def sample_telegram_callback():
    """Sample Telegram callback_query Update (inline button press)"""
    return {
        "update_id": 100200301,
        "callback_query": {
            "id": "cbq-77",
            "from": {"id": 4242, "first_name": "Asha"},
            "message": {"message_id": 12, "chat": {"id": -100500}},
            "data": "flow:sender",
        },
    }
