"""
Pytest configuration for otpguard tests.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from otpguard.config import OtpGuardConfig
from otpguard.otp.engine import OtpEngine
from otpguard.otp.models import Account
from otpguard.otp.ports import Notifier, UserDirectory
from otpguard.otp.store import InMemoryOtpStateStore
from otpguard.rate_limit.cooldown import IdentityRateLimiter
from otpguard.rate_limit.counters import InMemoryCounterStore

EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = EPOCH):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def set(self, instant: datetime) -> None:
        self.current = instant


class FixedGenerator:
    """Code generator returning a known code."""

    def __init__(self, code: str = "123456"):
        self.code = code

    def generate(self) -> str:
        return self.code


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def config():
    """Fast hashing, defaults otherwise."""
    return OtpGuardConfig(bcrypt_rounds=4)


@pytest.fixture
def store():
    return InMemoryOtpStateStore()


@pytest.fixture
def counters():
    return InMemoryCounterStore()


@pytest.fixture
def cooldown(store, counters, config):
    return IdentityRateLimiter.from_config(config, store, counters)


@pytest.fixture
def accounts():
    """Identity -> enabled flag backing the mock user directory."""
    return {
        "new@example.com": False,
        "active@example.com": True,
    }


@pytest.fixture
def mock_users(accounts):
    mock = MagicMock(spec=UserDirectory)

    async def find_by_identity(identity):
        if identity not in accounts:
            return None
        return Account(identity=identity, enabled=accounts[identity])

    async def activate(identity):
        was_enabled = accounts[identity]
        accounts[identity] = True
        return not was_enabled

    mock.find_by_identity = AsyncMock(side_effect=find_by_identity)
    mock.activate = AsyncMock(side_effect=activate)
    mock.update_password = AsyncMock()
    return mock


@pytest.fixture
def mock_notifier():
    mock = MagicMock(spec=Notifier)
    mock.send_code = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def generator():
    return FixedGenerator("123456")


@pytest.fixture
def engine(store, cooldown, mock_users, mock_notifier, config, generator, clock):
    return OtpEngine(
        store,
        cooldown,
        mock_users,
        mock_notifier,
        config=config,
        generator=generator,
        clock=clock,
    )
