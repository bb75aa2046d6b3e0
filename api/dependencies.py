"""
API依赖项 - 应用服务与网关的装配
"""
from typing import Callable

from fastapi import Depends

from application.services.payment_ledger_service import PaymentLedgerService
from core.settings import PaymentSettings, payment_settings
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


def get_uow_factory() -> Callable[..., AbstractUnitOfWork]:
    return SQLAlchemyUnitOfWork


def get_payment_settings() -> PaymentSettings:
    return payment_settings


def get_ledger_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
) -> PaymentLedgerService:
    return PaymentLedgerService(uow_factory=uow_factory)
