"""Operation log API endpoints"""
from typing import List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel

from adprovider import logger as provider_logger

router = APIRouter(prefix="/api/logs", tags=["logs"])


class LogEntry(BaseModel):
    timestamp: str
    level: str
    operator: str
    action: str
    object: str
    details: str = ""


@router.get("", response_model=List[LogEntry])
def get_logs(
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of entries"),
    operator: Optional[str] = Query(None, description="Only entries written by this operator"),
):
    """Recorded directory mutations, newest first."""
    logs = provider_logger.operation_logger.get_logs(limit=limit, filter_operator=operator)
    return [
        LogEntry(
            timestamp=log["timestamp"],
            level=log["level"],
            operator=log["operator"],
            action=log["action"],
            object=log["object"],
            details=log.get("details", ""),
        )
        for log in logs
    ]
