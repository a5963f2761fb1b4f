import logging
import time
import traceback
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from price_reducer.clock import Clock, SystemClock
from price_reducer.exceptions import StoreUnavailableError
from price_reducer.models import JobRun

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class JobStats:
    read_count: int = 0
    write_count: int = 0
    error_count: int = 0
    meta: dict[str, Any] = field(default_factory=dict)


class JobRunner:
    """
    공통 잡 러너.
    - 실행 이력(JobRun) 기록: running -> success / partial / fail
    - 잡 내부에서 발생한 예외는 기록 후 그대로 다시 던집니다.
    """

    def __init__(self, session_factory: Callable[[], Session], clock: Optional[Clock] = None):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def _start(self, job_type: str, account_id: Optional[uuid.UUID], meta: dict[str, Any]) -> uuid.UUID:
        with self._session_factory() as session:
            with session.begin():
                run = JobRun(
                    job_type=job_type,
                    account_id=account_id,
                    status="running",
                    started_at=self._clock.now(),
                    meta=meta,
                )
                session.add(run)
                session.flush()
                return run.id

    def _finish(self, run_id: uuid.UUID, status: str, stats: JobStats, duration_ms: int, last_error: Optional[str]) -> None:
        with self._session_factory() as session:
            with session.begin():
                run = session.get(JobRun, run_id)
                if run is None:
                    return
                run.status = status
                run.finished_at = self._clock.now()
                run.duration_ms = duration_ms
                run.read_count = stats.read_count
                run.write_count = stats.write_count
                run.error_count = stats.error_count
                run.last_error = last_error
                run.meta = {**(run.meta or {}), **stats.meta}

    async def run(
        self,
        job_type: str,
        func: Callable[[JobStats], Awaitable[T]],
        account_id: Optional[uuid.UUID] = None,
        meta: Optional[dict[str, Any]] = None,
    ) -> T:
        """
        잡을 감싸서 실행합니다.

        Args:
            job_type: price_reduction, listing_sync, log_purge
            func: 실제 작업. JobStats 를 받아 카운트를 채웁니다.
        """
        stats = JobStats()
        try:
            run_id = self._start(job_type, account_id, meta or {})
        except OperationalError as e:
            raise StoreUnavailableError(f"잡 실행 이력을 기록할 수 없습니다: {e}", operation="job_run_start") from e
        started = time.monotonic()
        logger.info(f"[JOB] Starting run {run_id} ({job_type}{f':{account_id}' if account_id else ''})")

        status = "fail"
        last_error = None
        try:
            result = await func(stats)
            status = "success" if stats.error_count == 0 else "partial"
            return result
        except Exception as e:
            logger.error(f"[JOB] Run {run_id} encountered a critical failure: {e}")
            last_error = f"{e}\n{traceback.format_exc()}"[:4000]
            raise
        finally:
            duration_ms = int((time.monotonic() - started) * 1000)
            try:
                self._finish(run_id, status, stats, duration_ms, last_error)
            except SQLAlchemyError as finish_error:
                # 원래 예외가 가려지지 않도록 이력 기록 실패는 로그만 남김
                logger.error(f"[JOB] Failed to record run {run_id} result: {finish_error}")
            logger.info(f"[JOB] Run {run_id} completed. Status: {status}, Written: {stats.write_count}, Errors: {stats.error_count}")
