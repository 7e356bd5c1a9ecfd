"""
OpenAero 도메인 예외

서비스 계층은 아래 예외만 던지고, HTTP 변환은 openaero.main 의 예외 핸들러가 담당합니다.
"""
from typing import Any, Dict, Optional


class OpenAeroError(Exception):
    """
    Base exception for all domain errors

    Attributes:
        message: 에러 메시지
        error_code: 에러 코드
        status_code: 매핑될 HTTP 상태 코드
        context: 추가 컨텍스트 정보
    """

    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_code
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """에러 정보를 응답 본문 형태로 변환"""
        body: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "code": self.error_code,
        }
        if self.context:
            body["details"] = self.context
        return body


class ValidationError(OpenAeroError):
    """입력값 검증 실패 (400)"""

    status_code = 400
    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", None) or {}
        if field:
            context["field"] = field
        super().__init__(message, context=context, **kwargs)
        self.field = field


class BusinessRuleError(OpenAeroError):
    """상태 전이 등 업무 규칙 위반 (400)"""

    status_code = 400
    default_code = "BUSINESS_RULE_VIOLATION"


class UnauthorizedError(OpenAeroError):
    status_code = 401
    default_code = "UNAUTHORIZED"


class ForbiddenError(OpenAeroError):
    status_code = 403
    default_code = "FORBIDDEN"


class NotFoundError(OpenAeroError):
    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(OpenAeroError):
    """동일 엔티티에 대한 작업 충돌 (409) - 예: 이미 진행 중인 심사"""

    status_code = 409
    default_code = "CONFLICT"


class PaymentGatewayError(OpenAeroError):
    """
    외부 결제사(Alipay/WeChat) 조회 호출 실패

    Attributes:
        provider: ALIPAY / WECHAT
        http_status: 결제사 응답 HTTP 상태
    """

    status_code = 502
    default_code = "PAYMENT_GATEWAY_ERROR"

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        http_status: Optional[int] = None,
        recoverable: bool = True,
        **kwargs,
    ):
        context = {"provider": provider, "http_status": http_status}
        context.update(kwargs.pop("context", None) or {})
        super().__init__(message, context=context, **kwargs)
        self.provider = provider
        self.http_status = http_status
        self.recoverable = recoverable


class WebhookProcessingError(OpenAeroError):
    """웹훅 처리 중 예기치 못한 오류. 트랜잭션은 롤백되고 결제사 형식으로 응답합니다."""

    status_code = 500
    default_code = "WEBHOOK_PROCESSING_ERROR"

    def __init__(self, message: str, provider: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.provider = provider
