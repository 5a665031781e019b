"""
Payment Gateway Abstraction
=============================
Each gateway implements create_bill(), verify_callback() and get_bill().
Registry pattern for gateway lookup by ProviderType.

Adapters are built per call from one mosque's ProviderConfig and an injected
httpx.Client; they hold no state beyond that and never retry.
"""

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Any, Optional, Type, Union

import httpx

from common.exceptions import (
    ValidationError, GatewayRequestError, GatewayResponseError, GatewayTimeoutError,
)
from modules.contribution.models import ContributionStatus
from modules.payment_provider.models import ProviderType
from modules.payment_provider.service import ProviderConfig

logger = logging.getLogger("khairat.gateway")

_SEN = Decimal("0.01")


# ==========================================
# Currency
# ==========================================

def to_minor_units(amount: Union[Decimal, int, str, float]) -> int:
    """MYR -> sen, rounded half-up to the nearest sen."""
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_major_units(minor: Union[int, str]) -> Decimal:
    """sen -> MYR with exactly two decimal places."""
    return (Decimal(int(minor)) / 100).quantize(_SEN)


# ==========================================
# Value objects
# ==========================================

@dataclass(frozen=True)
class BillCreateRequest:
    """Input for creating a bill. Amount is in major units (MYR)."""
    mosque_id: str
    contribution_id: str
    amount: Decimal
    payer_name: str
    description: str = ""
    payer_email: Optional[str] = None
    payer_mobile: Optional[str] = None
    reference: Optional[str] = None     # externally visible, defaults to contribution_id

    @property
    def external_reference(self) -> str:
        return self.reference or self.contribution_id


@dataclass(frozen=True)
class BillHandle:
    """Result of create_bill()."""
    bill_id: str
    payment_url: str
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BillStatus:
    """Result of get_bill(). status is None while the gateway still shows it unpaid/pending."""
    bill_id: str
    status: Optional[ContributionStatus]
    state: str = ""
    paid_amount: Optional[Decimal] = None
    raw: Any = None


class BaseGateway:
    """Abstract gateway interface."""
    provider_type: ProviderType
    label: str = ""
    bill_id_field: str = ""
    signature_field: str = ""

    def __init__(self, config: ProviderConfig, client: httpx.Client, timeout: float = 15):
        self.config = config
        self.client = client
        self.timeout = timeout

    to_minor_units = staticmethod(to_minor_units)
    to_major_units = staticmethod(to_major_units)

    # ------------------------------------------
    # Contract
    # ------------------------------------------

    def validate_request(self, req: BillCreateRequest) -> None:
        if not (req.payer_name or "").strip():
            raise ValidationError("Payer name is required")

    def create_bill(self, req: BillCreateRequest, callback_url: str, redirect_url: str) -> BillHandle:
        raise NotImplementedError

    def get_bill(self, bill_id: str) -> BillStatus:
        raise NotImplementedError

    def verify_callback(self, payload: Dict[str, Any]) -> bool:
        raise NotImplementedError

    def build_payment_url(self, bill_id: str) -> str:
        raise NotImplementedError

    def callback_status(self, payload: Dict[str, Any]) -> Optional[ContributionStatus]:
        raise NotImplementedError

    def callback_amount(self, payload: Dict[str, Any]) -> Optional[Decimal]:
        return None

    def test_connection(self) -> Dict[str, Any]:
        raise NotImplementedError

    @classmethod
    def extract_bill_id(cls, payload: Dict[str, Any]) -> Optional[str]:
        """Works on the class: the bill id is needed before the mosque (and its config) is known."""
        value = payload.get(cls.bill_id_field)
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    # ------------------------------------------
    # HTTP helpers
    # ------------------------------------------

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send one request. Timeouts and non-2xx are raised, never retried."""
        name = self.provider_type.value
        try:
            resp = self.client.request(method, url, timeout=self.timeout, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"{name} {method} {url} timed out: {e}")
            raise GatewayTimeoutError(f"{self.label} did not respond in time; the request may have been received")
        except httpx.HTTPError as e:
            logger.error(f"{name} {method} {url} failed: {e}")
            raise GatewayRequestError(f"Could not connect to {self.label}: {e}")

        if not resp.is_success:
            logger.error(f"{name} {method} {url} -> {resp.status_code}: {resp.text[:500]}")
            raise GatewayRequestError(
                f"{self.label} API error: {resp.status_code}",
                status_code=resp.status_code,
                body=resp.text,
            )
        return resp

    def _json(self, resp: httpx.Response) -> Any:
        text = resp.text
        if not text or not text.strip():
            raise GatewayResponseError(f"{self.label} returned an empty response", body=text)
        try:
            return json.loads(text)
        except ValueError:
            raise GatewayResponseError(f"{self.label} returned invalid JSON", body=text)


# ── Registry ──

GATEWAYS: Dict[ProviderType, Type[BaseGateway]] = {}


def register_gateway(gw_class: Type[BaseGateway]):
    GATEWAYS[gw_class.provider_type] = gw_class
    return gw_class
