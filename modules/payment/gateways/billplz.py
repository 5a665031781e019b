"""
Billplz Gateway
================
REST, form-encoded, HTTP Basic auth (API key as username).
Create bill → redirect to bill URL → callback (POST) + redirect (GET), both X-Signature signed.
"""

import hashlib
import hmac
import logging
from decimal import Decimal
from typing import Dict, Any, Optional

from config.settings import BILLPLZ_API_URL, BILLPLZ_SANDBOX_API_URL
from common.exceptions import ValidationError, GatewayResponseError
from common.helpers import truncate_text, safe_int
from modules.contribution.models import ContributionStatus
from modules.payment_provider.models import ProviderType
from modules.payment.gateways import (
    BaseGateway, BillCreateRequest, BillHandle, BillStatus, register_gateway,
)

logger = logging.getLogger("khairat.gateway.billplz")

NAME_LIMIT = 255
DESCRIPTION_LIMIT = 200
REFERENCE_LIMIT = 120

# redirect query params arrive as billplz[id], billplz[paid], billplz[x_signature] ...
_REDIRECT_PREFIX = "billplz["


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class BillplzGateway(BaseGateway):
    provider_type = ProviderType.BILLPLZ
    label = "Billplz"
    bill_id_field = "id"
    signature_field = "x_signature"

    @property
    def api_url(self) -> str:
        return BILLPLZ_SANDBOX_API_URL if self.config.is_sandbox else BILLPLZ_API_URL

    @property
    def _auth(self):
        return (self.config.credential("api_key"), "")

    # ------------------------------------------
    # Bills
    # ------------------------------------------

    def validate_request(self, req: BillCreateRequest) -> None:
        super().validate_request(req)
        if not (req.payer_email or req.payer_mobile):
            raise ValidationError("Billplz requires the payer's email or mobile number")

    def create_bill(self, req: BillCreateRequest, callback_url: str, redirect_url: str) -> BillHandle:
        self.validate_request(req)
        collection_id = self.config.credential("collection_id")
        name = truncate_text(req.payer_name.strip(), NAME_LIMIT)
        description = req.description or f"Khairat contribution for {req.payer_name}"

        form = {
            "collection_id": collection_id,
            "name": name,
            "email": req.payer_email,
            "mobile": req.payer_mobile,
            "amount": self.to_minor_units(req.amount),
            "description": truncate_text(description, DESCRIPTION_LIMIT),
            "callback_url": callback_url,
            "redirect_url": redirect_url,
            "reference_1_label": "Contribution ID",
            "reference_1": truncate_text(req.external_reference, REFERENCE_LIMIT),
            "reference_2_label": "Mosque ID",
            "reference_2": truncate_text(req.mosque_id, REFERENCE_LIMIT),
        }
        form = {k: str(v) for k, v in form.items() if v not in (None, "")}

        resp = self._request("POST", f"{self.api_url}/bills", data=form, auth=self._auth)
        data = self._json(resp)
        logger.info(f"Billplz create [{req.contribution_id}]: id={data.get('id') if isinstance(data, dict) else None}")

        if not isinstance(data, dict) or not data.get("id"):
            raise GatewayResponseError("Billplz response has no bill id", body=resp.text)

        bill_id = str(data["id"])
        return BillHandle(
            bill_id=bill_id,
            payment_url=data.get("url") or self.build_payment_url(bill_id),
            extra={
                "collection_id": collection_id,
                "bill_name": name,
                "bill_description": description,
            },
        )

    def get_bill(self, bill_id: str) -> BillStatus:
        resp = self._request("GET", f"{self.api_url}/bills/{bill_id}", auth=self._auth)
        data = self._json(resp)
        if not isinstance(data, dict):
            raise GatewayResponseError("Billplz bill query returned an unexpected body", body=resp.text)

        state = _as_text(data.get("state"))
        if _as_text(data.get("paid")) == "true":
            status = ContributionStatus.COMPLETED
        elif state == "deleted":
            status = ContributionStatus.FAILED
        else:
            status = None

        paid_amount = safe_int(data.get("paid_amount"))
        return BillStatus(
            bill_id=bill_id,
            status=status,
            state=state,
            paid_amount=self.to_major_units(paid_amount) if paid_amount else None,
            raw=data,
        )

    def build_payment_url(self, bill_id: str) -> str:
        web_base = self.api_url.rsplit("/api/", 1)[0]
        return f"{web_base}/bills/{bill_id}"

    def test_connection(self) -> Dict[str, Any]:
        collection_id = self.config.credential("collection_id")
        resp = self._request("GET", f"{self.api_url}/collections/{collection_id}", auth=self._auth)
        data = self._json(resp)
        if not isinstance(data, dict):
            raise GatewayResponseError("Billplz collection lookup returned an unexpected body", body=resp.text)
        return {"id": data.get("id"), "title": data.get("title"), "status": data.get("status")}

    # ------------------------------------------
    # Callbacks
    # ------------------------------------------

    @classmethod
    def _field(cls, payload: Dict[str, Any], name: str) -> Any:
        if name in payload:
            return payload[name]
        return payload.get(f"{_REDIRECT_PREFIX}{name}]")

    @classmethod
    def extract_bill_id(cls, payload: Dict[str, Any]) -> Optional[str]:
        value = _as_text(cls._field(payload, "id")).strip()
        return value or None

    def signature_source(self, payload: Dict[str, Any]) -> str:
        """
        Sorted `key` + `value` pairs joined with '|', X-Signature excluded.
        Redirect payloads are signed over their bracketed keys only.
        """
        if any(k.startswith(_REDIRECT_PREFIX) for k in payload):
            items = {
                k: v for k, v in payload.items()
                if k.startswith(_REDIRECT_PREFIX) and k != f"{_REDIRECT_PREFIX}x_signature]"
            }
        else:
            items = {k: v for k, v in payload.items() if k != "x_signature"}
        return "|".join(f"{k}{_as_text(items[k])}" for k in sorted(items))

    def sign(self, payload: Dict[str, Any]) -> str:
        key = self.config.credential("x_signature_key").encode("utf-8")
        return hmac.new(key, self.signature_source(payload).encode("utf-8"), hashlib.sha256).hexdigest()

    def verify_callback(self, payload: Dict[str, Any]) -> bool:
        received = _as_text(self._field(payload, "x_signature")).strip()
        if not received or not self.extract_bill_id(payload):
            return False
        if not self.config.credential("x_signature_key"):
            return False
        return hmac.compare_digest(self.sign(payload), received.lower())

    def callback_status(self, payload: Dict[str, Any]) -> Optional[ContributionStatus]:
        paid = _as_text(self._field(payload, "paid")).strip().lower()
        if paid == "true":
            return ContributionStatus.COMPLETED
        if paid == "false":
            return ContributionStatus.FAILED
        return None

    def callback_amount(self, payload: Dict[str, Any]) -> Optional[Decimal]:
        paid_amount = safe_int(self._field(payload, "paid_amount"))
        if paid_amount is None:
            return None
        return self.to_major_units(paid_amount)


register_gateway(BillplzGateway)
