import os
import sys
from datetime import date
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Ensure project root is on sys.path so `import tests.fixtures` works when running pytest from root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Force test settings before any package imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["NPHIES_CLIENT_TYPE"] = "mock"
os.environ["ENABLE_SCHEDULED_POLLING"] = "false"

from nphies_poll.db import models  # noqa: E402,F401
from nphies_poll.db.base import Base  # noqa: E402
from nphies_poll.db.unit_of_work import UnitOfWork  # noqa: E402
from nphies_poll.exchange.config import PollerConfig  # noqa: E402


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """
    Provide a session factory bound to a fresh SQLite database per test.

    A file database is used so concurrent sessions behave like a real
    server instead of sharing one in-memory connection.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'poll.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def poller_config():
    return PollerConfig(
        base_url="http://nphies.test",
        provider_id="1010613708",
        client_type="mock",
        timeout_seconds=1.0,
        poll_interval_minutes=1,
        initial_delay_seconds=0,
    )


class Seeder:
    """Creates business records the engine reconciles against."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def prior_authorization(self, **fields):
        fields.setdefault("request_number", "PA-1001")
        fields.setdefault("status", "pending")
        async with UnitOfWork(self.session_factory) as uow:
            return await uow.prior_authorizations.create(**fields)

    async def claim_submission(self, **fields):
        fields.setdefault("claim_number", "CLM-2001")
        fields.setdefault("status", "pending")
        async with UnitOfWork(self.session_factory) as uow:
            return await uow.claim_submissions.create(**fields)

    async def advanced_authorization(self, **fields):
        fields.setdefault("status", "approved")
        async with UnitOfWork(self.session_factory) as uow:
            return await uow.advanced_authorizations.create(**fields)

    async def paid_claim(self, patient="1098765432", provider="PR-FHIR", service_date=date(2026, 10, 1)):
        return await self.claim_submission(
            claim_number="CLM-HEUR",
            patient_identifier=patient,
            provider_identifier=provider,
            service_date=service_date,
        )


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)
