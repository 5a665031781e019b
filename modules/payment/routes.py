"""
Payment Routes
================
Bill creation, status lookup, and per-gateway callback/redirect webhooks.

Webhook responses: 200 for anything already settled (including duplicates, so
the gateway stops retrying); non-200 for new failures so the gateway retries.
"""

import logging
from decimal import Decimal
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Request, Depends, Query
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from config.database import get_db
from config.settings import BASE_URL, PAYMENT_RESULT_PATH
from common.exceptions import (
    KhairatError, ValidationError, ProviderNotConfiguredError, GatewayTimeoutError, GatewayError,
    PersistenceAfterCreateError, MissingBillReferenceError, ContributionNotFoundError,
    SignatureMismatchError, raise_http,
)
from common.helpers import now_iso
from modules.payment_provider.models import ProviderType
from modules.payment.gateways import BillCreateRequest
from modules.payment.service import PaymentService, CallbackResult

logger = logging.getLogger("khairat.payment")

router = APIRouter(tags=["payment"])


def get_payment_service(request: Request) -> PaymentService:
    """FastAPI dependency: service bound to the app-wide httpx.Client (see main.lifespan)."""
    return PaymentService(request.app.state.http_client)


class CreatePaymentIn(BaseModel):
    contribution_id: str
    mosque_id: str
    amount: Decimal
    payer_name: str
    payer_email: Optional[str] = None
    payer_mobile: Optional[str] = None
    description: Optional[str] = None
    reference: Optional[str] = None
    provider_type: str


def _create_status(error: KhairatError) -> int:
    if isinstance(error, (ValidationError, ProviderNotConfiguredError)):
        return 400
    if isinstance(error, ContributionNotFoundError):
        return 404
    if isinstance(error, GatewayTimeoutError):
        return 504
    if isinstance(error, GatewayError):
        return 502
    return 500


def _callback_status(error: KhairatError) -> int:
    if isinstance(error, (MissingBillReferenceError, ValidationError)):
        return 400
    if isinstance(error, SignatureMismatchError):
        return 403
    if isinstance(error, ContributionNotFoundError):
        return 404
    if isinstance(error, ProviderNotConfiguredError):
        return 503
    return 500


def _result_page(contribution_id: str, status: str, error: str = "") -> RedirectResponse:
    params = {"contribution_id": contribution_id, "status": status}
    if error:
        params["error"] = error
    return RedirectResponse(f"{BASE_URL}{PAYMENT_RESULT_PATH}?{urlencode(params)}", status_code=303)


def _callback_response(result: CallbackResult) -> JSONResponse:
    return JSONResponse({
        "message": "Callback processed successfully",
        "outcome": result.outcome.value,
        "status": result.status.value,
    })


# ==========================================
# 🏦 Create Bill
# ==========================================

@router.post("/api/payments/create")
def create_payment(
    body: CreatePaymentIn,
    db: Session = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    req = BillCreateRequest(
        mosque_id=body.mosque_id,
        contribution_id=body.contribution_id,
        amount=body.amount,
        payer_name=body.payer_name,
        payer_email=body.payer_email,
        payer_mobile=body.payer_mobile,
        description=body.description or f"Khairat contribution for {body.payer_name}",
        reference=body.reference,
    )
    try:
        handle = service.create_bill(db, body.provider_type, req)
    except PersistenceAfterCreateError as e:
        # already logged CRITICAL by the service
        raise_http(e, 500)
    except KhairatError as e:
        db.rollback()
        logger.warning(f"Create payment failed for contribution {body.contribution_id}: {e.message}")
        raise_http(e, _create_status(e))

    return {
        "success": True,
        "payment_id": handle.bill_id,
        "payment_url": handle.payment_url,
        "message": "Payment created successfully",
    }


# ==========================================
# 🔍 Status / availability
# ==========================================

@router.get("/api/payments/status")
def payment_status(
    contribution_id: str = Query(...),
    mosque_id: str = Query(...),
    db: Session = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    try:
        info = service.get_payment_status(db, contribution_id, mosque_id)
    except KhairatError as e:
        raise_http(e, _create_status(e))
    return {"success": True, **info}


@router.get("/api/payments/providers")
def payment_providers(
    mosque_id: str = Query(...),
    db: Session = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    providers = [p.value for p in service.available_providers(db, mosque_id)]
    return {"providers": providers, "has_active_provider": bool(providers), "needs_setup": not providers}


# ==========================================
# 📥 Webhooks (shared)
# ==========================================

def _process(
    service: PaymentService, db: Session, provider_type: ProviderType,
    payload: dict, contribution_id: Optional[str], source: str = "callback",
) -> CallbackResult:
    if not contribution_id:
        raise ValidationError("Missing contribution ID")
    return service.process_callback(db, provider_type, payload, contribution_id, source=source)


async def _handle_callback(
    request: Request, provider_type: ProviderType, db: Session, service: PaymentService,
    payload: dict,
):
    contribution_id = request.query_params.get("contribution_id")
    try:
        result = await run_in_threadpool(_process, service, db, provider_type, payload, contribution_id)
    except KhairatError as e:
        status_code = _callback_status(e)
        logger.warning(f"{provider_type.value} callback rejected ({status_code}): {e.message}")
        return JSONResponse({"error": e.message}, status_code=status_code)
    return _callback_response(result)


def _reachable(provider: str):
    return {"message": f"{provider} callback endpoint is active", "timestamp": now_iso()}


# ==========================================
# 🏦 Billplz
# ==========================================

@router.post("/api/webhooks/billplz/callback")
async def billplz_callback(
    request: Request,
    db: Session = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    """Billplz server-to-server callback (form POST, X-Signature in body or header)."""
    form = await request.form()
    payload = {k: str(v) for k, v in form.items()}
    if not payload.get("x_signature") and request.headers.get("x-signature"):
        payload["x_signature"] = request.headers["x-signature"]
    return await _handle_callback(request, ProviderType.BILLPLZ, db, service, payload)


@router.get("/api/webhooks/billplz/callback")
def billplz_callback_reachable():
    return _reachable("Billplz")


@router.get("/api/webhooks/billplz/redirect")
def billplz_redirect(
    request: Request,
    db: Session = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    """Payer's browser returns with signed billplz[...] params; reconcile then show the result page."""
    contribution_id = request.query_params.get("contribution_id", "")
    payload = {k: v for k, v in request.query_params.items() if k.startswith("billplz[")}
    try:
        result = _process(service, db, ProviderType.BILLPLZ, payload, contribution_id, source="redirect")
    except KhairatError as e:
        logger.warning(f"Billplz redirect for contribution {contribution_id} not reconciled: {e.message}")
        return _result_page(contribution_id, "error", e.message)
    return _result_page(contribution_id, result.status.value)


# ==========================================
# 🏦 ToyyibPay
# ==========================================

@router.post("/api/webhooks/toyyibpay/callback")
async def toyyibpay_callback(
    request: Request,
    db: Session = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    """ToyyibPay server-to-server callback (form POST with md5 hash)."""
    form = await request.form()
    payload = {k: str(v) for k, v in form.items()}
    return await _handle_callback(request, ProviderType.TOYYIBPAY, db, service, payload)


@router.get("/api/webhooks/toyyibpay/callback")
def toyyibpay_callback_reachable():
    return _reachable("ToyyibPay")


def _toyyibpay_return(
    service: PaymentService, db: Session, contribution_id: str, billcode: str, status_id: str,
) -> RedirectResponse:
    """
    Return URL params are unsigned, so status_id is never trusted here:
    the bill is re-queried from ToyyibPay with the mosque's own secret key.
    """
    if not contribution_id or not billcode:
        return _result_page(contribution_id, "error", "Missing payment information")
    try:
        result = service.sync_bill_status(db, ProviderType.TOYYIBPAY, contribution_id, billcode)
    except KhairatError as e:
        logger.warning(
            f"ToyyibPay redirect for contribution {contribution_id} (status_id={status_id}) "
            f"not reconciled: {e.message}"
        )
        return _result_page(contribution_id, "error", e.message)
    return _result_page(contribution_id, result.status.value)


@router.get("/api/webhooks/toyyibpay/redirect")
def toyyibpay_redirect(
    contribution_id: str = Query(""),
    billcode: str = Query(""),
    status_id: str = Query(""),
    db: Session = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    return _toyyibpay_return(service, db, contribution_id, billcode, status_id)


@router.post("/api/webhooks/toyyibpay/redirect")
async def toyyibpay_redirect_post(
    request: Request,
    db: Session = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    """Some ToyyibPay flows POST the return fields; handled like the GET."""
    form = await request.form()
    params = {**{k: str(v) for k, v in form.items()}, **request.query_params}
    return await run_in_threadpool(
        _toyyibpay_return, service, db,
        params.get("contribution_id", ""), params.get("billcode", ""), params.get("status_id", ""),
    )
