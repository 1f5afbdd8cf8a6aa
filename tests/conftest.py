import asyncio
import inspect
import os

# keep the application module off the on-disk database
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from carchat.core.config import Settings
from carchat.core.db import Base
from carchat.core.errors import GatewayError
from carchat.gateway.realtime import ChangeFeed
from carchat.gateway.sql import SqlGateway
from carchat.models.car import Car
from carchat.models.chat import Conversation, Message, Presence, BlockedUser  # noqa: F401
from carchat.models.user import Profile
from carchat.services.context import ChatContext

BUYER = "b0b0b0b0-0000-0000-0000-000000000001"
SELLER = "5e11e500-0000-0000-0000-000000000002"
STRANGER = "0dd0dd00-0000-0000-0000-000000000003"
CAR = "ca400000-0000-0000-0000-000000000010"
OTHER_CAR = "ca400000-0000-0000-0000-000000000011"


class CountingGateway:
    """Records every gateway call made through it."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = []

    def __getattr__(self, name):
        attr = getattr(self.inner, name)
        if name.startswith("_") or not callable(attr):
            return attr

        async def wrapper(*args, **kwargs):
            self.calls.append(name)
            return await attr(*args, **kwargs)

        return wrapper


def break_gateway(gateway, *names):
    """Make the named operations fail like an unreachable store.

    Returns the list the failing calls are recorded in.
    """
    calls = []
    for name in names:
        async def fail(*args, _name=name, **kwargs):
            calls.append(_name)
            raise GatewayError(message=f"{_name}: connection refused")

        setattr(gateway, name, fail)
    return calls


def hold_gateway(gateway, name):
    """Make the named operation wait until the returned ``release`` is set.

    ``reached`` is set once a caller is parked inside the operation.
    """
    reached, release = asyncio.Event(), asyncio.Event()
    real = getattr(gateway, name)

    async def held(*args, **kwargs):
        reached.set()
        await release.wait()
        return await real(*args, **kwargs)

    setattr(gateway, name, held)
    return reached, release


async def eventually(predicate, timeout=1.0):
    """Poll ``predicate`` (plain or async) until it holds or time runs out."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = predicate()
        if inspect.isawaitable(result):
            result = await result
        if result:
            return
        if loop.time() > deadline:
            raise AssertionError("condition not met in %ss" % timeout)
        await asyncio.sleep(0.005)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def gateway(session_factory, feed):
    return SqlGateway(session_factory, feed)


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        PRESENCE_HEARTBEAT_SECONDS=0.05,
        READ_DELAY_ON_FOCUS=0,
        READ_DELAY_ON_FOREGROUND=0,
        READ_DELAY_ON_INBOUND=0,
    )


@pytest.fixture(autouse=True)
def people(session_factory):
    """Buyer, seller, a stranger and two of the seller's cars."""
    db = session_factory()
    db.add_all([
        Profile(id=BUYER, email="budi@example.com", full_name="Budi Santoso"),
        Profile(id=SELLER, email="sari@example.com", full_name="Sari Wijaya", avatar_url="https://cdn.example.com/sari.png"),
        Profile(id=STRANGER, email="eve@example.com", full_name="Eve"),
    ])
    db.flush()
    db.add_all([
        Car(id=CAR, user_id=SELLER, brand="Toyota", model="Avanza", year=2019, price=185000000,
            images=["https://cdn.example.com/avanza-1.jpg"]),
        Car(id=OTHER_CAR, user_id=SELLER, brand="Honda", model="Jazz", year=2017, price=160000000, images=[]),
    ])
    db.commit()
    db.close()


@pytest.fixture
def buyer_ctx(gateway, test_settings):
    return ChatContext(gateway, BUYER, test_settings)


@pytest.fixture
def seller_ctx(gateway, test_settings):
    return ChatContext(gateway, SELLER, test_settings)


@pytest.fixture
def stranger_ctx(gateway, test_settings):
    return ChatContext(gateway, STRANGER, test_settings)
