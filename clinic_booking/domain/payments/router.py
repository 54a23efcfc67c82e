"""Payments router - gateway redirects and the PayMongo webhook"""

import json
import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from ...config import FRONTEND_URL, PAYMONGO_WEBHOOK_SECRET
from ...database import get_db
from ...exceptions import GatewayUnavailable, NotFound
from ...rate_limiter import create_rate_limiter
from ...services.notifications import send_receipt_for_appointment
from ...webhook_security import verify_paymongo_webhook
from .gateway import PayMongoGateway, get_payment_gateway, status_from_webhook, verdict_for_event
from .reconciler import (
    ConfirmationChannel,
    ConfirmationReconciler,
    ReconcileOutcome,
    ReconcileResult,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Payments"])

webhook_rate_limit = create_rate_limiter(
    limit=300, window_seconds=60, key_prefix="paymongo_webhook", use_ip=False
)

REDIRECT_STATUS = {
    ReconcileOutcome.CONFIRMED: "success",
    ReconcileOutcome.ALREADY_PROCESSED: "success",
    ReconcileOutcome.PROCESSING: "processing",
    ReconcileOutcome.RELEASED: "cancelled",
}


def get_reconciler(
    db: Session = Depends(get_db),
    gateway: PayMongoGateway = Depends(get_payment_gateway),
) -> ConfirmationReconciler:
    """Dependency injection for ConfirmationReconciler"""
    return ConfirmationReconciler(db, gateway)


def _frontend_redirect(result_status: str, appointment_id: Optional[str]) -> RedirectResponse:
    params = {"status": result_status}
    if appointment_id:
        params["appointment_id"] = appointment_id
    return RedirectResponse(
        url=f"{FRONTEND_URL.rstrip('/')}/payment/result?{urlencode(params)}", status_code=303
    )


def _redirect_status(result: ReconcileResult) -> str:
    if result.outcome == ReconcileOutcome.NOT_APPLICABLE:
        # e.g. failed_timeout / cancelled
        return result.appointment.status
    return REDIRECT_STATUS[result.outcome]


async def _handle_redirect(
    channel: ConfirmationChannel,
    appointment_id: Optional[str],
    session_id: Optional[str],
    reconciler: ConfirmationReconciler,
    background_tasks: BackgroundTasks,
) -> RedirectResponse:
    logger.info(
        f"📥 Payment {channel.value} redirect for appointment {appointment_id} "
        f"(query session_id={session_id!r} ignored)"
    )
    if not appointment_id:
        return _frontend_redirect("invalid", None)

    try:
        result = await reconciler.reconcile(appointment_id, channel)
    except NotFound:
        logger.warning(f"⚠️ Redirect for unknown appointment {appointment_id}")
        return _frontend_redirect("not_found", appointment_id)
    except GatewayUnavailable:
        # Payment may still have gone through; the webhook settles it
        return _frontend_redirect("processing", appointment_id)

    if result.outcome == ReconcileOutcome.CONFIRMED:
        background_tasks.add_task(send_receipt_for_appointment, result.appointment.id)
    return _frontend_redirect(_redirect_status(result), appointment_id)


@router.get("/payments/success")
async def payment_success(
    background_tasks: BackgroundTasks,
    appointment_id: Optional[str] = Query(None),
    session_id: Optional[str] = Query(None),
    reconciler: ConfirmationReconciler = Depends(get_reconciler),
):
    """Return URL after checkout; verifies with the gateway before confirming"""
    return await _handle_redirect(
        ConfirmationChannel.REDIRECT, appointment_id, session_id, reconciler, background_tasks
    )


@router.get("/payments/cancelled")
async def payment_cancelled(
    background_tasks: BackgroundTasks,
    appointment_id: Optional[str] = Query(None),
    session_id: Optional[str] = Query(None),
    reconciler: ConfirmationReconciler = Depends(get_reconciler),
):
    """Cancel URL; releases the slot unless the gateway reports the session paid"""
    return await _handle_redirect(
        ConfirmationChannel.CANCEL_REDIRECT, appointment_id, session_id, reconciler, background_tasks
    )


@router.post("/webhooks/paymongo", dependencies=[Depends(webhook_rate_limit)])
async def paymongo_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    reconciler: ConfirmationReconciler = Depends(get_reconciler),
):
    """
    PayMongo webhook endpoint.

    The signature is verified on the raw body before anything is parsed.
    Paid / failed payment events are reconciled; everything else is acknowledged.
    """
    raw_body = await verify_paymongo_webhook(request, PAYMONGO_WEBHOOK_SECRET)

    try:
        payload = json.loads(raw_body)
        event = payload["data"]["attributes"]
        event_type = event.get("type")
        verdict = verdict_for_event(event_type)
    except (ValueError, KeyError, TypeError, AttributeError):
        logger.error("❌ PayMongo webhook body is not a valid event")
        return JSONResponse(status_code=400, content={"error": "Invalid payload"})

    if verdict is None:
        logger.info(f"ℹ️ PayMongo webhook event ignored: {event_type}")
        return {"status": "ignored"}

    try:
        resource = event.get("data") or {}
        metadata = resource.get("attributes", {}).get("metadata") or {}
        raw_appointment_id = metadata.get("appointment_id")
        webhook_status = status_from_webhook(resource, verdict)
    except (KeyError, TypeError, AttributeError):
        logger.error(f"❌ PayMongo {event_type} carries a malformed resource")
        return JSONResponse(status_code=400, content={"error": "Invalid payload"})

    try:
        appointment_id = int(raw_appointment_id)
    except (TypeError, ValueError):
        logger.warning(f"⚠️ PayMongo {event_type} without appointment_id in metadata")
        return {"status": "ignored"}

    logger.info(f"📥 PayMongo {event_type} for appointment {appointment_id}")
    try:
        result = await reconciler.reconcile(
            appointment_id, ConfirmationChannel.WEBHOOK, verdict=webhook_status
        )
    except NotFound:
        logger.warning(f"⚠️ PayMongo webhook for unknown appointment {appointment_id}")
        return {"status": "not_found"}
    except Exception as e:
        logger.error(f"❌ Webhook payment processing failed for appointment {appointment_id}: {e}")
        return JSONResponse(status_code=500, content={"error": "Processing failed"})

    if result.outcome == ReconcileOutcome.CONFIRMED:
        background_tasks.add_task(send_receipt_for_appointment, result.appointment.id)
    return {"status": result.outcome.value}
