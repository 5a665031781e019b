"""
Payment Service
=================
Multi-gateway khairat payments (Billplz, ToyyibPay).
The provider is always named explicitly by the caller; the mosque's own
credentials are resolved per call from payment_providers.

Lifecycle of a contribution, as seen from here:

    pending   --create_bill-------------------> pending (bill_id attached)
    pending   --callback paid-----------------> completed
    pending   --callback unpaid---------------> failed
    same terminal outcome again --------------> no-op
    completed / failed / cancelled --other----> no-op, warning logged

Callbacks are matched on (contribution id, bill id) together and must carry
a valid gateway signature before anything is written.
"""

import enum
import logging
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Dict, Any, List, Optional, Tuple, Type, Union
from urllib.parse import urlencode

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.settings import BASE_URL, GATEWAY_TIMEOUT
from common.exceptions import (
    KhairatError, ValidationError, ProviderNotConfiguredError, PersistenceAfterCreateError,
    MissingBillReferenceError, ContributionNotFoundError, SignatureMismatchError,
)
from common.helpers import safe_decimal, format_ringgit
from modules.contribution.models import KhairatContribution, ContributionStatus
from modules.contribution.service import contribution_service
from modules.payment.metadata import CreationMetadata, CallbackMetadata, latest_callback
from modules.payment_provider.models import ProviderType
from modules.payment_provider.service import provider_service, parse_provider_type

# Import gateway modules to trigger register_gateway() calls
from modules.payment.gateways import (  # noqa: F401
    GATEWAYS, BaseGateway, BillCreateRequest, BillHandle,
)
import modules.payment.gateways.billplz     # noqa: F401
import modules.payment.gateways.toyyibpay   # noqa: F401

logger = logging.getLogger("khairat.payment")

_SEN = Decimal("0.01")


class CallbackOutcome(str, enum.Enum):
    APPLIED = "applied"         # status changed
    DUPLICATE = "duplicate"     # same outcome already recorded
    IGNORED = "ignored"         # terminal state we refuse to leave
    PENDING = "pending"         # gateway reports nothing final yet


@dataclass(frozen=True)
class CallbackResult:
    contribution_id: str
    bill_id: str
    status: ContributionStatus
    outcome: CallbackOutcome

    @property
    def changed(self) -> bool:
        return self.outcome == CallbackOutcome.APPLIED


class PaymentService:
    """Stateless; the HTTP client is injected so tests can swap in a fake gateway."""

    def __init__(
        self,
        http_client: httpx.Client,
        base_url: str = BASE_URL,
        timeout: float = GATEWAY_TIMEOUT,
        gateways: Optional[Dict[ProviderType, Type[BaseGateway]]] = None,
    ):
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.gateways = GATEWAYS if gateways is None else gateways

    # ==========================================
    # 🔧 Gateway Selection
    # ==========================================

    def _gateway_class(self, provider_type: ProviderType) -> Type[BaseGateway]:
        gw_class = self.gateways.get(provider_type)
        if not gw_class:
            raise ValidationError(f"Unsupported payment provider: {provider_type.value}")
        return gw_class

    def _build_gateway(self, db: Session, mosque_id: str, provider_type: ProviderType) -> BaseGateway:
        gw_class = self._gateway_class(provider_type)
        config = provider_service.resolve(db, mosque_id, provider_type)
        if config is None:
            raise ProviderNotConfiguredError(provider_type.value, mosque_id)
        return gw_class(config, self.http_client, timeout=self.timeout)

    def available_providers(self, db: Session, mosque_id: str) -> List[ProviderType]:
        return [p for p in provider_service.list_available(db, mosque_id) if p in self.gateways]

    def webhook_urls(self, provider_type: ProviderType, contribution_id: str) -> Tuple[str, str]:
        """Callback + redirect URLs; the contribution id rides along as a query param."""
        query = urlencode({"contribution_id": contribution_id})
        base = f"{self.base_url}/api/webhooks/{provider_type.value}"
        return f"{base}/callback?{query}", f"{base}/redirect?{query}"

    # ==========================================
    # 🏦 Bill Creation
    # ==========================================

    def _validate_amount(self, amount) -> Decimal:
        value = safe_decimal(amount)
        if value is None or not value.is_finite() or value <= 0:
            raise ValidationError("Invalid amount")
        try:
            quantized = value.quantize(_SEN)
        except InvalidOperation:
            raise ValidationError("Invalid amount")
        if value != quantized:
            raise ValidationError("Amount must have at most two decimal places")
        return value

    def create_bill(
        self, db: Session, provider_type: Union[str, ProviderType], req: BillCreateRequest,
    ) -> BillHandle:
        """
        Create a bill at the chosen gateway and link it to the contribution.

        Everything that can be rejected locally (provider, config, amount, payer
        fields, contribution state) is checked before the gateway is called.
        """
        provider_type = parse_provider_type(provider_type)
        gateway = self._build_gateway(db, req.mosque_id, provider_type)

        req = replace(req, amount=self._validate_amount(req.amount))
        gateway.validate_request(req)

        contribution = contribution_service.get_for_mosque(db, req.contribution_id, req.mosque_id)
        if not contribution:
            raise ContributionNotFoundError(req.contribution_id)
        if contribution.status != ContributionStatus.PENDING.value:
            raise ValidationError("Contribution is not in pending status")
        if contribution.bill_id:
            raise ValidationError("Contribution already has a bill")
        if Decimal(contribution.amount) != req.amount:
            logger.warning(
                f"Contribution {contribution.id} is {format_ringgit(contribution.amount)} "
                f"but a bill for {format_ringgit(req.amount)} was requested"
            )

        callback_url, redirect_url = self.webhook_urls(provider_type, req.contribution_id)
        handle = gateway.create_bill(req, callback_url, redirect_url)

        creation = CreationMetadata(
            provider=provider_type.value,
            bill_id=handle.bill_id,
            payment_url=handle.payment_url,
            amount_minor=gateway.to_minor_units(req.amount),
            callback_url=callback_url,
            redirect_url=redirect_url,
            bill_name=handle.extra.get("bill_name", ""),
            bill_description=handle.extra.get("bill_description", ""),
            collection_id=handle.extra.get("collection_id"),
            category_code=handle.extra.get("category_code"),
        )
        try:
            contribution_service.attach_bill(db, contribution, creation)
        except SQLAlchemyError as e:
            logger.critical(
                f"MANUAL RECONCILIATION NEEDED: {provider_type.value} bill {handle.bill_id} exists "
                f"for contribution {req.contribution_id} (mosque {req.mosque_id}) but was not saved: {e}"
            )
            raise PersistenceAfterCreateError(req.contribution_id, handle.bill_id, provider_type.value) from e

        logger.info(
            f"Created {provider_type.value} bill {handle.bill_id} for contribution "
            f"{req.contribution_id} ({format_ringgit(req.amount)})"
        )
        return handle

    # ==========================================
    # 📥 Callback Reconciliation
    # ==========================================

    def process_callback(
        self,
        db: Session,
        provider_type: Union[str, ProviderType],
        payload: Dict[str, Any],
        contribution_id: str,
        source: str = "callback",
    ) -> CallbackResult:
        """Verify an inbound gateway callback and advance the contribution's status."""
        provider_type = parse_provider_type(provider_type)
        gw_class = self._gateway_class(provider_type)
        payload = dict(payload)

        bill_id = gw_class.extract_bill_id(payload)
        if not bill_id:
            raise MissingBillReferenceError(provider_type.value)

        try:
            contribution = self._find_for_callback(db, provider_type, contribution_id, bill_id, for_update=True)
            gateway = self._build_gateway(db, contribution.mosque_id, provider_type)

            if not gateway.verify_callback(payload):
                logger.warning(
                    f"{provider_type.value} {source} for contribution {contribution_id} "
                    f"bill {bill_id} failed signature verification"
                )
                raise SignatureMismatchError(provider_type.value, bill_id)

            status = gateway.callback_status(payload)
            self._check_amount(contribution, gateway.callback_amount(payload), status)
            return self._apply(db, contribution, provider_type, bill_id, status, payload, source)
        except KhairatError:
            db.rollback()
            raise

    def sync_bill_status(
        self,
        db: Session,
        provider_type: Union[str, ProviderType],
        contribution_id: str,
        bill_id: str,
    ) -> CallbackResult:
        """Reconcile from the gateway's own bill query (authenticated with our credentials)."""
        provider_type = parse_provider_type(provider_type)
        contribution = self._find_for_callback(db, provider_type, contribution_id, bill_id)
        gateway = self._build_gateway(db, contribution.mosque_id, provider_type)

        # no row lock is held across the gateway call
        db.rollback()
        bill = gateway.get_bill(bill_id)

        contribution = self._find_for_callback(db, provider_type, contribution_id, bill_id, for_update=True)
        self._check_amount(contribution, bill.paid_amount, bill.status)
        payload = {"state": bill.state, "response": bill.raw}
        return self._apply(db, contribution, provider_type, bill_id, bill.status, payload, "query")

    def _find_for_callback(
        self, db: Session, provider_type: ProviderType,
        contribution_id: str, bill_id: str, for_update: bool = False,
    ) -> KhairatContribution:
        contribution = contribution_service.get_by_compound_key(db, contribution_id, bill_id, for_update=for_update)
        if not contribution or contribution.payment_method != provider_type.value:
            logger.warning(
                f"No {provider_type.value} contribution matches id={contribution_id} bill={bill_id}"
            )
            raise ContributionNotFoundError(contribution_id, bill_id)
        return contribution

    def _check_amount(
        self, contribution: KhairatContribution,
        reported: Optional[Decimal], status: Optional[ContributionStatus],
    ):
        if status != ContributionStatus.COMPLETED or reported is None:
            return
        if reported != Decimal(contribution.amount):
            logger.warning(
                f"Amount mismatch on contribution {contribution.id}: stored "
                f"{format_ringgit(contribution.amount)}, gateway reported {format_ringgit(reported)}"
            )

    def _apply(
        self,
        db: Session,
        contribution: KhairatContribution,
        provider_type: ProviderType,
        bill_id: str,
        status: Optional[ContributionStatus],
        payload: Dict[str, Any],
        source: str,
    ) -> CallbackResult:
        current = contribution.status_enum

        def result(outcome: CallbackOutcome) -> CallbackResult:
            return CallbackResult(contribution.id, bill_id, contribution.status_enum, outcome)

        if status is None:
            logger.info(f"Bill {bill_id} still pending at {provider_type.value} ({source})")
            db.rollback()
            return result(CallbackOutcome.PENDING)

        if status == current:
            logger.info(f"Duplicate {provider_type.value} {source} for contribution {contribution.id}: already {current.value}")
            db.rollback()
            return result(CallbackOutcome.DUPLICATE)

        if current != ContributionStatus.PENDING:
            logger.warning(
                f"Ignoring {status.value} {source} for contribution {contribution.id}: "
                f"already {current.value}"
            )
            db.rollback()
            return result(CallbackOutcome.IGNORED)

        callback = CallbackMetadata(
            provider=provider_type.value,
            bill_id=bill_id,
            status=status.value,
            payload=payload,
            source=source,
        )
        contribution_service.record_callback(db, contribution, status, callback)
        logger.info(
            f"Contribution {contribution.id} {current.value} -> {status.value} "
            f"via {provider_type.value} {source} (bill {bill_id})"
        )
        return result(CallbackOutcome.APPLIED)

    # ==========================================
    # 🔍 Status & Reconciliation
    # ==========================================

    def get_payment_status(self, db: Session, contribution_id: str, mosque_id: str) -> Dict[str, Any]:
        """Read-only: stored status next to what the gateway currently reports."""
        contribution = contribution_service.get_for_mosque(db, contribution_id, mosque_id)
        if not contribution:
            raise ContributionNotFoundError(contribution_id)

        info = {
            "contribution_id": contribution.id,
            "contribution_status": contribution.status,
            "payment_method": contribution.payment_method,
            "bill_id": contribution.bill_id,
            "amount": str(contribution.amount),
            "last_updated": contribution.updated_at.isoformat() if contribution.updated_at else None,
        }
        last = latest_callback(contribution.payment_data)
        info["last_callback_at"] = last["received_at"] if last else None
        if not contribution.bill_id or not contribution.payment_method:
            info["message"] = "No payment initiated yet"
            return info

        gateway = self._build_gateway(db, mosque_id, parse_provider_type(contribution.payment_method))
        bill = gateway.get_bill(contribution.bill_id)
        info["provider_status"] = bill.status.value if bill.status else ContributionStatus.PENDING.value
        info["provider_state"] = bill.state
        return info

    def reconcile_pending_bills(self, db: Session, older_than_minutes: int = 30) -> int:
        """Query the gateway for stale pending bills; returns how many contributions changed."""
        changed = 0
        for contribution in contribution_service.list_pending_bills(db, older_than_minutes):
            contribution_id, bill_id = contribution.id, contribution.bill_id
            try:
                result = self.sync_bill_status(db, contribution.payment_method, contribution_id, bill_id)
            except KhairatError as e:
                db.rollback()
                logger.warning(f"Reconcile skipped contribution {contribution_id} (bill {bill_id}): {e.message}")
                continue
            if result.changed:
                changed += 1
        return changed

    def test_provider_connection(
        self, db: Session, mosque_id: str, provider_type: Union[str, ProviderType],
    ) -> Dict[str, Any]:
        """Check the mosque's stored credentials against the gateway."""
        provider_type = parse_provider_type(provider_type)
        gateway = self._build_gateway(db, mosque_id, provider_type)
        info = gateway.test_connection()
        logger.info(f"{provider_type.value} connection test OK for mosque {mosque_id}")
        return info
