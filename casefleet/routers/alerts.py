"""Alert listing and acknowledgement.

GET  /api/v1/alerts                       -- unacknowledged alerts, optionally filtered
POST /api/v1/alerts/{alert_id}/acknowledge
"""

from typing import Optional

from fastapi import APIRouter, HTTPException

from casefleet.dependencies import DbSession
from casefleet.models.alert import AlertScope
from casefleet.schemas.stats import AlertResponse
from casefleet.services.alerts import acknowledge_alert, list_active_alerts

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


@router.get("", response_model=list[AlertResponse])
async def list_alerts(
    db: DbSession,
    scope: Optional[AlertScope] = None,
    subject: Optional[str] = None,
    period_date: Optional[str] = None,
) -> list[AlertResponse]:
    alerts = await list_active_alerts(db, scope, subject, period_date)
    return [AlertResponse.model_validate(alert) for alert in alerts]


@router.post("/{alert_id}/acknowledge")
async def acknowledge(alert_id: int, db: DbSession) -> dict:
    if not await acknowledge_alert(db, alert_id):
        raise HTTPException(status_code=404, detail="Alert not found or already acknowledged")
    return {"status": "acknowledged", "alert_id": alert_id}
