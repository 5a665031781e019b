import hashlib
import hmac
import os
from datetime import timedelta
from decimal import Decimal
from urllib.parse import parse_qsl

# settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BASE_URL"] = "https://khairat.test"
os.environ["RECONCILE_ENABLED"] = "false"

import httpx
import pytest

from config.database import Base, SessionLocal, engine
from common.helpers import now_utc
from modules.contribution.models import KhairatContribution, ContributionStatus
from modules.payment_provider.models import PaymentProvider, ProviderType

BILLPLZ_API = "https://www.billplz-sandbox.com/api/v3"
TOYYIBPAY_API = "https://dev.toyyibpay.com/index.php/api"

BILLPLZ_CREDENTIALS = {
    "billplz_api_key": "bp-api-key-mosque",
    "billplz_x_signature_key": "bp-xsig-mosque",
    "billplz_collection_id": "col_abc123",
}
TOYYIBPAY_CREDENTIALS = {
    "toyyibpay_secret_key": "tp-secret-mosque",
    "toyyibpay_category_code": "cat_xyz789",
}


# ==========================================
# Database
# ==========================================

@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_provider(db):
    def _make(mosque_id="mosque-1", provider_type=ProviderType.BILLPLZ, **overrides):
        provider_type = ProviderType(provider_type)
        values = dict(BILLPLZ_CREDENTIALS if provider_type == ProviderType.BILLPLZ else TOYYIBPAY_CREDENTIALS)
        values.update(overrides)
        record = PaymentProvider(mosque_id=mosque_id, provider_type=provider_type.value, **values)
        db.add(record)
        db.commit()
        return record
    return _make


@pytest.fixture
def make_contribution(db):
    def _make(mosque_id="mosque-1", amount="25.50", status=ContributionStatus.PENDING, **overrides):
        values = {
            "contributor_name": "Ahmad bin Abdullah",
            "updated_at": now_utc() - timedelta(hours=1),
        }
        values.update(overrides)
        contribution = KhairatContribution(
            mosque_id=mosque_id,
            amount=Decimal(amount),
            status=ContributionStatus(status).value,
            **values,
        )
        db.add(contribution)
        db.commit()
        return contribution
    return _make


# ==========================================
# Fake gateway (httpx.MockTransport)
# ==========================================

class FakeGateway:
    """Records every outbound request and answers from a list of canned routes."""

    def __init__(self):
        self.requests = []
        self.routes = []

    def add(self, method, path, json=None, status_code=200, text=None, exc=None):
        self.routes.append((method.upper(), path, json, status_code, text, exc))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for method, path, json, status_code, text, exc in reversed(self.routes):
            if request.method == method and request.url.path.endswith(path):
                if exc is not None:
                    raise exc(f"fake {exc.__name__}", request=request)
                if text is not None:
                    return httpx.Response(status_code, text=text)
                return httpx.Response(status_code, json=json)
        return httpx.Response(599, text=f"no fake route for {request.method} {request.url.path}")

    @staticmethod
    def form(request: httpx.Request) -> dict:
        return dict(parse_qsl(request.content.decode("utf-8"), keep_blank_values=True))

    @property
    def last_form(self) -> dict:
        return self.form(self.requests[-1])


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def http_client(fake_gateway):
    client = httpx.Client(transport=httpx.MockTransport(fake_gateway))
    yield client
    client.close()


# ==========================================
# Signing helpers
# ==========================================

def billplz_signature(payload: dict, key: str = BILLPLZ_CREDENTIALS["billplz_x_signature_key"]) -> str:
    source = "|".join(
        f"{k}{payload[k]}" for k in sorted(payload)
        if k not in ("x_signature", "billplz[x_signature]")
    )
    return hmac.new(key.encode(), source.encode(), hashlib.sha256).hexdigest()


def toyyibpay_hash(payload: dict, secret: str = TOYYIBPAY_CREDENTIALS["toyyibpay_secret_key"]) -> str:
    source = f"{secret}{payload.get('refno', '')}{payload.get('amount', '')}{payload.get('status_id', '')}"
    return hashlib.md5(source.encode()).hexdigest()


@pytest.fixture
def billplz_callback():
    """Signed Billplz server callback payload for a bill."""
    def _make(bill_id, paid=True, paid_amount="2550", key=BILLPLZ_CREDENTIALS["billplz_x_signature_key"], **extra):
        payload = {
            "id": bill_id,
            "collection_id": BILLPLZ_CREDENTIALS["billplz_collection_id"],
            "paid": "true" if paid else "false",
            "state": "paid" if paid else "due",
            "amount": "2550",
            "paid_amount": paid_amount if paid else "0",
            "due_at": "2026-10-19",
            "email": "ahmad@example.com",
            "mobile": "",
            "name": "AHMAD BIN ABDULLAH",
            "url": f"https://www.billplz-sandbox.com/bills/{bill_id}",
            "paid_at": "2026-10-19 10:15:00 +0800" if paid else "",
        }
        payload.update(extra)
        payload["x_signature"] = billplz_signature(payload, key)
        return payload
    return _make


@pytest.fixture
def toyyibpay_callback():
    """Signed ToyyibPay server callback payload for a bill."""
    def _make(bill_code, status_id="1", amount="25.50", secret=TOYYIBPAY_CREDENTIALS["toyyibpay_secret_key"], **extra):
        payload = {
            "refno": "TP2026101912345",
            "status_id": status_id,
            "reason": "Approved" if status_id == "1" else "Declined",
            "billcode": bill_code,
            "order_id": "",
            "amount": amount,
            "transaction_time": "2026-10-19 10:15:00",
        }
        payload.update(extra)
        payload["hash"] = toyyibpay_hash(payload, secret)
        return payload
    return _make
