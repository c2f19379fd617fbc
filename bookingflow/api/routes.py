from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from twilio.twiml.messaging_response import MessagingResponse

from bookingflow.api.auth import get_current_admin_uid, require_cron_secret
from bookingflow.config import settings
from bookingflow.database import get_db
from bookingflow.logging_config import get_logger
from bookingflow.services.archival_service import run_archival_for_tenant, run_expiry_archival
from bookingflow.services.reminder_service import run_reminders
from bookingflow.services.retention_service import run_retention_cleanup
from bookingflow.services.sms_service import MessagingGateway
from bookingflow.services.webhook_service import (
    WEBHOOK_PATH,
    get_webhook_url,
    handle_inbound,
    parse_form,
    validate_signature,
)

logger = get_logger("api")

router = APIRouter()


class ArchivalCleanupRequest(BaseModel):
    """Request body for the admin archival run"""

    before_date: Optional[str] = None
    dry_run: bool = False


class ArchivalCleanupResponse(BaseModel):
    """Response model for the admin archival run"""

    tenant_id: str
    before_date: str
    dry_run: bool
    scanned: int
    archived: int
    deleted_only: int
    deleted: int
    errors: int
    min_date: Optional[str] = None
    max_date: Optional[str] = None


def get_messaging_gateway(db: Session = Depends(get_db)) -> MessagingGateway:
    return MessagingGateway(db)


@router.get("/")
def read_root():
    return {
        "message": f"Welcome to {settings.app_name}",
        "docs": "/docs",
        "health": "/health",
    }


@router.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "ok", "app": settings.app_name}


@router.post(WEBHOOK_PATH)
async def twilio_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Inbound WhatsApp / SMS reply from Twilio.

    - Verify X-Twilio-Signature (403 on mismatch)
    - Apply the reply to the matching visit
    - Answer with TwiML; empty <Response/> when nothing should be sent
    """
    raw_body = (await request.body()).decode("utf-8")
    form = parse_form(raw_body)
    url = get_webhook_url(WEBHOOK_PATH, request.headers, str(request.url))
    validate_signature(
        settings.twilio_auth_token,
        request.headers.get("x-twilio-signature", ""),
        url,
        raw_body,
        form,
    )

    result = await run_in_threadpool(handle_inbound, db, form)

    twiml = MessagingResponse()
    if result.reply:
        twiml.message(result.reply)
    return Response(content=str(twiml), media_type="application/xml")


@router.post("/cron/reminders", dependencies=[Depends(require_cron_secret)])
def cron_reminders(
    db: Session = Depends(get_db),
    gateway: MessagingGateway = Depends(get_messaging_gateway),
):
    """Send 24h reminders (external cron trigger)"""
    report = run_reminders(db, gateway)
    return report.to_dict()


@router.post("/cron/expiry-archival", dependencies=[Depends(require_cron_secret)])
def cron_expiry_archival(db: Session = Depends(get_db)):
    """Archive past bookings for every tenant due today"""
    summaries = run_expiry_archival(db)
    return {"tenants": [asdict(s) for s in summaries]}


@router.post("/cron/retention", dependencies=[Depends(require_cron_secret)])
def cron_retention(db: Session = Depends(get_db)):
    """Delete cancelled and expired records for tenants whose schedule is due"""
    summaries = run_retention_cleanup(db)
    return {"tenants": [asdict(s) for s in summaries]}


@router.post("/admin/tenants/{tenant_id}/archival-cleanup", response_model=ArchivalCleanupResponse)
def admin_archival_cleanup(
    tenant_id: str,
    payload: Optional[ArchivalCleanupRequest] = None,
    caller_uid: str = Depends(get_current_admin_uid),
    db: Session = Depends(get_db),
):
    """
    Run the archival routine for one tenant now.

    Only the tenant owner may call it. `dry_run` counts without writing.
    """
    payload = payload or ArchivalCleanupRequest()
    result = run_archival_for_tenant(
        db,
        tenant_id,
        caller_uid,
        before_date=payload.before_date,
        dry_run=payload.dry_run,
    )
    return ArchivalCleanupResponse(**result)
