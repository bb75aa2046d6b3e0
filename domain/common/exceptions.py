"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class PaymentNotFoundException(BusinessException):
    def __init__(self, payment_id: Optional[str] = None):
        details = {"payment_id": payment_id} if payment_id else None
        super().__init__(
            code=BusinessCode.PAYMENT_NOT_FOUND,
            message="Payment not found",
            error_type="PaymentNotFound",
            details=details,
        )


class WebhookEventAlreadyRecordedException(BusinessException):
    """(gateway, gateway_event_id) 唯一约束冲突，由仓储在插入时抛出"""

    def __init__(self, gateway: str, gateway_event_id: str):
        super().__init__(
            code=BusinessCode.WEBHOOK_EVENT_CONFLICT,
            message="Webhook event already recorded",
            error_type="WebhookEventAlreadyRecorded",
            details={"gateway": gateway, "gateway_event_id": gateway_event_id},
        )
