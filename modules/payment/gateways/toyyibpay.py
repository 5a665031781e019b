"""
ToyyibPay Gateway
==================
REST, form-encoded, secret key in the body. createBill → redirect to {base}/{BillCode}
→ callback (POST, md5 hash) + return URL (GET, unsigned).
"""

import hashlib
import hmac
import logging
from decimal import Decimal
from typing import Dict, Any, Optional

from config.settings import TOYYIBPAY_URL, TOYYIBPAY_SANDBOX_URL
from common.exceptions import ValidationError, GatewayResponseError
from common.helpers import truncate_text, safe_decimal
from modules.contribution.models import ContributionStatus
from modules.payment_provider.models import ProviderType
from modules.payment.gateways import (
    BaseGateway, BillCreateRequest, BillHandle, BillStatus, register_gateway,
)

logger = logging.getLogger("khairat.gateway.toyyibpay")

BILL_NAME_LIMIT = 30
BILL_DESCRIPTION_LIMIT = 100

# status_id / billpaymentStatus codes
STATUS_SUCCESS = "1"
STATUS_PENDING = "2"
STATUS_FAILED = "3"


class ToyyibPayGateway(BaseGateway):
    provider_type = ProviderType.TOYYIBPAY
    label = "ToyyibPay"
    bill_id_field = "billcode"
    signature_field = "hash"

    @property
    def base_url(self) -> str:
        return TOYYIBPAY_SANDBOX_URL if self.config.is_sandbox else TOYYIBPAY_URL

    def _api(self, method: str) -> str:
        return f"{self.base_url}/index.php/api/{method}"

    # ------------------------------------------
    # Bills
    # ------------------------------------------

    def validate_request(self, req: BillCreateRequest) -> None:
        super().validate_request(req)
        # billPayorInfo=1 makes the payer's phone mandatory
        if not (req.payer_mobile or "").strip():
            raise ValidationError("ToyyibPay requires the payer's mobile number")

    def create_bill(self, req: BillCreateRequest, callback_url: str, redirect_url: str) -> BillHandle:
        self.validate_request(req)
        category_code = self.config.credential("category_code")
        description = req.description or f"Khairat contribution for {req.payer_name}"
        bill_name = truncate_text(description, BILL_NAME_LIMIT)

        form = {
            "userSecretKey": self.config.credential("secret_key"),
            "categoryCode": category_code,
            "billName": bill_name,
            "billDescription": truncate_text(description, BILL_DESCRIPTION_LIMIT),
            "billPriceSetting": 1,      # fixed price
            "billPayorInfo": 1,         # payer info required
            "billAmount": self.to_minor_units(req.amount),
            "billReturnUrl": redirect_url,
            "billCallbackUrl": callback_url,
            "billExternalReferenceNo": req.external_reference,
            "billTo": req.payer_name.strip(),
            "billEmail": req.payer_email or "",
            "billPhone": req.payer_mobile.strip(),
            "billSplitPayment": 0,
            "billSplitPaymentArgs": "",
            "billPaymentChannel": "0",  # FPX
            "billChargeToCustomer": 1,
        }
        form = {k: str(v) for k, v in form.items()}

        resp = self._request("POST", self._api("createBill"), data=form)
        data = self._json(resp)

        # answers [{"BillCode": ...}] or occasionally a bare object
        entry = data[0] if isinstance(data, list) and data else data
        bill_code = entry.get("BillCode") if isinstance(entry, dict) else None
        if not bill_code:
            msg = entry.get("msg", "") if isinstance(entry, dict) else ""
            logger.error(f"ToyyibPay create [{req.contribution_id}] returned no BillCode: {resp.text[:300]}")
            raise GatewayResponseError(f"ToyyibPay response has no BillCode {msg}".strip(), body=resp.text)

        bill_code = str(bill_code)
        logger.info(f"ToyyibPay create [{req.contribution_id}]: BillCode={bill_code}")
        return BillHandle(
            bill_id=bill_code,
            payment_url=self.build_payment_url(bill_code),
            extra={
                "category_code": category_code,
                "bill_name": bill_name,
                "bill_description": description,
            },
        )

    def get_bill(self, bill_id: str) -> BillStatus:
        resp = self._request("POST", self._api("getBillTransactions"), data={"billCode": bill_id})
        data = self._json(resp)
        transactions = data if isinstance(data, list) else []

        codes = [str(t.get("billpaymentStatus", "")) for t in transactions if isinstance(t, dict)]
        if STATUS_SUCCESS in codes:
            status = ContributionStatus.COMPLETED
            paid = next(t for t in transactions if str(t.get("billpaymentStatus")) == STATUS_SUCCESS)
            paid_amount = safe_decimal(paid.get("billpaymentAmount"))
        elif codes and codes[-1] == STATUS_FAILED:
            status, paid_amount = ContributionStatus.FAILED, None
        else:
            status, paid_amount = None, None

        return BillStatus(
            bill_id=bill_id,
            status=status,
            state=codes[-1] if codes else "",
            paid_amount=paid_amount,
            raw=data,
        )

    def build_payment_url(self, bill_id: str) -> str:
        return f"{self.base_url}/{bill_id}"

    def test_connection(self) -> Dict[str, Any]:
        resp = self._request("POST", self._api("getCategoryDetails"), data={
            "userSecretKey": self.config.credential("secret_key"),
            "categoryCode": self.config.credential("category_code"),
        })
        data = self._json(resp)
        entry = data[0] if isinstance(data, list) and data else data
        if not isinstance(entry, dict):
            raise GatewayResponseError("ToyyibPay category lookup returned an unexpected body", body=resp.text)
        return {
            "category_code": self.config.credential("category_code"),
            "name": entry.get("categoryName"),
            "status": entry.get("categoryStatus"),
        }

    # ------------------------------------------
    # Callbacks
    # ------------------------------------------

    def _status_code(self, payload: Dict[str, Any]) -> str:
        value = payload.get("status_id")
        if value in (None, ""):
            value = payload.get("status")
        return str(value).strip() if value is not None else ""

    def sign(self, payload: Dict[str, Any]) -> str:
        """md5(secret + refno + amount + status)."""
        source = "".join([
            self.config.credential("secret_key"),
            str(payload.get("refno") or ""),
            str(payload.get("amount") or ""),
            self._status_code(payload),
        ])
        return hashlib.md5(source.encode("utf-8")).hexdigest()

    def verify_callback(self, payload: Dict[str, Any]) -> bool:
        received = str(payload.get(self.signature_field) or "").strip().lower()
        if not received or not self.extract_bill_id(payload) or not self._status_code(payload):
            return False
        if not str(payload.get("refno") or "").strip() or not str(payload.get("amount") or "").strip():
            return False
        if not self.config.credential("secret_key"):
            return False
        return hmac.compare_digest(self.sign(payload), received)

    def callback_status(self, payload: Dict[str, Any]) -> Optional[ContributionStatus]:
        code = self._status_code(payload)
        if code == STATUS_SUCCESS:
            return ContributionStatus.COMPLETED
        if code == STATUS_FAILED:
            return ContributionStatus.FAILED
        # STATUS_PENDING (and "4", pending at bank) leave the bill open
        return None

    def callback_amount(self, payload: Dict[str, Any]) -> Optional[Decimal]:
        # callback amount is already in ringgit, e.g. "25.50"
        return safe_decimal(payload.get("amount"))


register_gateway(ToyyibPayGateway)
