import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header

import config
import orders
from errors import Unauthorized

logger = logging.getLogger("marketplace.routes.cron")

router = APIRouter(prefix="/api/cron", tags=["Cron"])


def require_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    expected = f"Bearer {config.CRON_SECRET}".encode()
    if not config.CRON_SECRET or not hmac.compare_digest(expected, (authorization or "").encode()):
        logger.warning("Rejected cron call without a valid secret")
        raise Unauthorized("Unauthorized")


@router.get("/sync-tracking", dependencies=[Depends(require_cron_secret)])
def sync_tracking():
    return {"success": True, **orders.sync_tracking()}
