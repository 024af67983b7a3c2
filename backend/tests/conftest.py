from __future__ import annotations
import os
import re
from dataclasses import dataclass
from html import unescape
from urllib.parse import parse_qs, urlsplit

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ["AUTO_MISS_SCHEDULER"] = "none"
os.environ["RESEND_API_KEY"] = ""
os.environ["RATE_LIMIT_BACKEND"] = "memory"

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from holeinone.db import Base, get_session
from holeinone.main import app
from holeinone.models.competition import Competition
from holeinone.models.user import User
from holeinone.security import make_access_token
from holeinone.services.errors import DeliveryFailure
from holeinone.services.mailer import SendResult, get_mailer
from holeinone.services.throttle import build_throttle, get_throttle
import holeinone.models.auth_token  # noqa: F401  register tables
import holeinone.models.verification  # noqa: F401


@dataclass
class SentEmail:
    to: str
    subject: str
    html: str
    sender: str | None


class RecordingMailer:
    def __init__(self):
        self.sent: list[SentEmail] = []
        self.fail = False

    async def send(self, to, subject, html, *, sender=None):
        if self.fail:
            raise DeliveryFailure()
        self.sent.append(SentEmail(to, subject, html, sender))
        return SendResult(id=f"test-{len(self.sent)}")

    def last_link(self) -> str:
        hrefs = re.findall(r'href="([^"]+)"', self.sent[-1].html)
        return unescape(hrefs[0])

    def last_params(self) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(urlsplit(self.last_link()).query).items()}


class FakeClock:
    def __init__(self, start: float = 1_760_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def throttle(clock):
    return build_throttle("memory", "", cooldown_seconds=60, clock=clock)


@pytest_asyncio.fixture
async def client(session, mailer, throttle):
    async def _get_session_override():
        yield session

    app.dependency_overrides[get_session] = _get_session_override
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_throttle] = lambda: throttle
    try:
        async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


async def _user(session, email: str, role: str) -> User:
    user = User(email=email, first_name=email.split("@")[0].title(), last_name="Tester", role=role, age_years=30)
    session.add(user)
    await session.commit()
    return user


@pytest_asyncio.fixture
async def player(session) -> User:
    return await _user(session, "pat@example.com", "player")


@pytest_asyncio.fixture
async def other_player(session) -> User:
    return await _user(session, "sam@example.com", "player")


@pytest_asyncio.fixture
async def admin(session) -> User:
    return await _user(session, "marshal@example.com", "club_admin")


@pytest_asyncio.fixture
async def competition(session) -> Competition:
    c = Competition(name="Summer Hole in One", club_name="Pine Valley", hole_number=7, attempt_window_minutes=15)
    session.add(c)
    await session.commit()
    return c


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_access_token(str(user.id))}"}
    return _headers
