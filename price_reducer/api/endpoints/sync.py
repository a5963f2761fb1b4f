import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException

from price_reducer.api.deps import get_container, verify_job_secret
from price_reducer.bootstrap import Container
from price_reducer.jobs import run_listing_sync
from price_reducer.schemas.listing import SyncRunRequest

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/run", dependencies=[Depends(verify_job_secret)])
async def run_sync(payload: SyncRunRequest | None = None, container: Container = Depends(get_container)) -> dict:
    payload = payload or SyncRunRequest()
    account_id = None
    if payload.account_id:
        try:
            account_id = uuid.UUID(payload.account_id)
        except ValueError:
            raise HTTPException(status_code=400, detail="accountId 형식이 올바르지 않습니다")

    result = await run_listing_sync(container, account_id)
    return {"success": result["failed"] == 0, **result}
