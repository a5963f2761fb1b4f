"""
Price Reducer Exception Classes

가격 인하 배치에서 사용하는 구조화된 예외 클래스 정의.
배치 루프는 예외를 직접 분기하지 않고 ErrorKind 로 변환된 결과 값을 사용합니다.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """아이템 단위 오류 분류"""
    TRANSIENT = "transient"
    VALIDATION = "validation"
    NEEDS_RECONNECT = "needs_reconnect"
    NOT_FOUND = "not_found"
    INVARIANT = "invariant"
    PROTOCOL = "protocol"


class PriceReducerError(Exception):
    """
    Base exception for all price reducer errors

    Attributes:
        message: 에러 메시지
        error_code: 에러 코드
        context: 추가 컨텍스트 정보
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """에러 정보를 딕셔너리로 변환"""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
        }


class ProtocolError(PriceReducerError):
    """
    마켓 API 호출 실패

    Attributes:
        status_code: HTTP 상태 코드 (네트워크 오류면 None)
        protocol: legacy / modern / oauth
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        protocol: Optional[str] = None,
        **kwargs,
    ):
        context = {"status_code": status_code, "protocol": protocol}
        context.update(kwargs)
        super().__init__(message=message, error_code="PROTOCOL_ERROR", context=context)
        self.status_code = status_code
        self.protocol = protocol

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"HTTP {self.status_code}: {self.message}"
        return self.message


class TransientProtocolError(ProtocolError):
    """5xx, 429, 타임아웃 등 다음 사이클에 재시도하면 되는 오류"""


class ListingNotFoundError(ProtocolError):
    """원격에서 리스팅이 이미 삭제/종료된 경우"""


class AuthError(PriceReducerError):
    """토큰 발급 실패"""

    def __init__(self, message: str, account_id: Any = None, **kwargs):
        context = {"account_id": str(account_id) if account_id is not None else None}
        context.update(kwargs)
        super().__init__(message=message, error_code="AUTH_ERROR", context=context)
        self.account_id = account_id


class NeedsReconnect(AuthError):
    """
    refresh token 이 무효/만료/폐기됨.
    자동 재시도하지 않고 계정 연결을 disconnected 로 표시합니다.
    """


class ListingValidationError(PriceReducerError):
    """
    최저가 누락, 잘못된 전략 설정 등 입력 검증 실패

    Attributes:
        field: 실패한 필드 이름
        actual_value: 실제 값
    """

    def __init__(self, message: str, field: Optional[str] = None, actual_value: Any = None):
        context = {
            "field": field,
            "actual_value": str(actual_value) if actual_value is not None else None,
        }
        super().__init__(message=message, error_code="VALIDATION_ERROR", context=context)
        self.field = field
        self.actual_value = actual_value


class InvariantViolation(PriceReducerError):
    """계산된 가격이 유한하지 않거나 0 이하인 경우"""

    def __init__(self, message: str, computed_price: Any = None):
        super().__init__(
            message=message,
            error_code="INVARIANT_VIOLATION",
            context={"computed_price": str(computed_price)},
        )
        self.computed_price = computed_price


class StoreUnavailableError(PriceReducerError):
    """DB 접속 불가. 배치 전체를 중단하는 유일한 오류입니다."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message=message, error_code="STORE_UNAVAILABLE", context={"operation": operation})
        self.operation = operation


def error_kind_of(error: Exception) -> ErrorKind:
    """예외를 배치 요약용 ErrorKind 로 변환"""
    if isinstance(error, NeedsReconnect):
        return ErrorKind.NEEDS_RECONNECT
    if isinstance(error, ListingNotFoundError):
        return ErrorKind.NOT_FOUND
    if isinstance(error, (TransientProtocolError, AuthError)):
        return ErrorKind.TRANSIENT
    if isinstance(error, ListingValidationError):
        return ErrorKind.VALIDATION
    if isinstance(error, InvariantViolation):
        return ErrorKind.INVARIANT
    return ErrorKind.PROTOCOL
