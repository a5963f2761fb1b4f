from collections.abc import Iterator

from fastapi import Header, HTTPException

from price_reducer.bootstrap import Container, build_container
from price_reducer.settings import settings


def get_container() -> Iterator[Container]:
    """요청 단위 컨테이너 (토큰 캐시가 요청 사이에 공유되지 않도록)"""
    yield build_container()


def verify_job_secret(x_job_secret: str | None = Header(default=None, alias="X-Job-Secret")) -> None:
    if not settings.job_trigger_secret:
        return
    if x_job_secret != settings.job_trigger_secret:
        raise HTTPException(status_code=401, detail="잡 실행 권한이 없습니다 (X-Job-Secret)")
