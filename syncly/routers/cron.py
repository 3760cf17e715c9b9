from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from syncly.config import settings
from syncly.database import get_db
from syncly.logging_config import get_logger
from syncly.schemas.webhook import SweepResponse
from syncly.services.pipeline_service import run_sweep

logger = get_logger("cron")

router = APIRouter()


def _require_cron_secret(authorization: Optional[str]) -> None:
    if not settings.is_production:
        return
    if not settings.cron_secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="CRON_SECRET not configured",
        )
    if authorization != f"Bearer {settings.cron_secret}":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.get("/api/cron/process-messages", response_model=SweepResponse)
async def process_messages(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> SweepResponse:
    _require_cron_secret(authorization)
    result = await run_sweep(db)
    if result["batches"]:
        logger.info("Sweep processed", extra={"context": result})
    return SweepResponse(**result)
