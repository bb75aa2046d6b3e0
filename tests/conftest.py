"""Pytest bootstrap configuration.

Ensure environment variables are set before test collection and module
imports that depend on application settings, and provide shared fixtures:
fully configured gateway settings and an in-memory SQLite ledger.
"""
import os

os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DEBUG", "false")

from functools import partial  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from application.services.payment_ledger_service import PaymentLedgerService  # noqa: E402
from core.settings import (  # noqa: E402
    FlowSettings,
    MercadoPagoSettings,
    NowPaymentsSettings,
    PaymentSettings,
    PayPalSettings,
)
from infrastructure.models import Base  # noqa: E402
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork  # noqa: E402


@pytest.fixture
def settings() -> PaymentSettings:
    return PaymentSettings(
        public_base_url="https://shop.example.com",
        flow=FlowSettings(api_key="flow-api-key", secret_key="flow-secret"),
        mercadopago=MercadoPagoSettings(access_token="mp-access-token"),
        paypal=PayPalSettings(
            api_base_url="https://api-m.sandbox.paypal.com",
            client_id="pp-client",
            client_secret="pp-secret",
        ),
        nowpayments=NowPaymentsSettings(api_key="np-api-key", ipn_secret="np-ipn-secret"),
    )


@pytest.fixture
def empty_settings() -> PaymentSettings:
    return PaymentSettings(
        public_base_url="https://shop.example.com",
        flow=FlowSettings(),
        mercadopago=MercadoPagoSettings(),
        paypal=PayPalSettings(),
        nowpayments=NowPaymentsSettings(),
    )


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def uow_factory(session_factory):
    return partial(SQLAlchemyUnitOfWork, session_factory)


@pytest.fixture
def ledger(uow_factory) -> PaymentLedgerService:
    return PaymentLedgerService(uow_factory=uow_factory)
