import logging

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from price_reducer.exceptions import ProtocolError, TransientProtocolError
from price_reducer.settings import settings

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


def network_retry(tag: str):
    """
    네트워크 계층 오류(httpx.TransportError)만 재시도합니다.
    HTTP 응답을 받은 경우는 호출 측에서 상태 코드로 분류합니다.
    """
    return retry(
        stop=stop_after_attempt(settings.http_retry_count),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            f"[{tag}] 네트워크 재시도 중... ({retry_state.attempt_number}회째): {retry_state.outcome.exception()}"
        ),
    )


def is_transient_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def classify_http_failure(status_code: int, message: str, protocol: str) -> ProtocolError:
    if is_transient_status(status_code):
        return TransientProtocolError(message, status_code=status_code, protocol=protocol)
    return ProtocolError(message, status_code=status_code, protocol=protocol)
