from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from price_reducer.db import get_session
from price_reducer.models import ConnectionStatus, MarketCredential, RunGuardState
from price_reducer.services.scheduling_guard import JOB_TYPE_PRICE_REDUCTION

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/system")
async def get_system_health(session: Session = Depends(get_session)):
    """
    DB 연결 상태와 마지막 인하 실행일, 재연결이 필요한 계정 수를 확인합니다.
    """
    db_ok = False
    last_completed = None
    disconnected = 0
    try:
        guard = session.get(RunGuardState, JOB_TYPE_PRICE_REDUCTION)
        last_completed = guard.last_completed_key if guard else None
        disconnected = session.scalar(
            select(func.count())
            .select_from(MarketCredential)
            .where(MarketCredential.connection_status == ConnectionStatus.DISCONNECTED.value)
        ) or 0
        db_ok = True
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")

    return {
        "status": "healthy" if db_ok else "unhealthy",
        "database": "ok" if db_ok else "error",
        "lastReductionDate": last_completed,
        "accountsNeedingReconnect": disconnected,
    }
