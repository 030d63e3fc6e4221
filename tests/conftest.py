"""Shared fixtures: a file-backed SQLite database per test and a wired Container."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Tuple

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from gramledger.app import create_app
from gramledger.app.core.config_core import Settings
from gramledger.app.core.database_core import build_engine
from gramledger.app.models import Base
from gramledger.app.services.container import Container

ADMIN_TOKEN = "test-admin-token"


class RecordingNotifier:
    """Notifier that keeps every message in memory."""

    def __init__(self) -> None:
        self.sent: List[Tuple[int, str, Dict[str, Any]]] = []

    async def notify(self, account_id: int, kind: str, payload: Mapping[str, Any]) -> None:
        self.sent.append((account_id, kind, dict(payload)))

    def kinds_for(self, account_id: int) -> List[str]:
        return [kind for acc, kind, _ in self.sent if acc == account_id]


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        ENV="test",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        ADMIN_API_TOKEN=ADMIN_TOKEN,
        NOTIFY_VIA_TELEGRAM=False,
    )


@pytest_asyncio.fixture
async def engine(settings):
    engine = build_engine(settings.database_url_async(), schema=settings.DB_SCHEMA_CORE)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def container(settings, engine, notifier) -> Container:
    container = Container(settings, engine=engine, notifier=notifier)
    await container.achievements.seed_default_catalog()
    await container.startup()
    return container


@pytest.fixture
def make_account(container):
    """Creates an account and optionally funds it with a deposit."""

    async def _make(balance: int = 0, **kwargs: Any):
        account = await container.accounts.create_account(**kwargs)
        if balance:
            await container.accounts.credit(account.id, balance, "deposit")
        return await container.accounts.get_account(account.id)

    return _make


@pytest_asyncio.fixture
async def client(container):
    app = create_app(container)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
