"""
Payment Metadata
=================
Typed variants of the contribution `payment_data` JSON bag.

Layout:
    {
      "provider": "toyyibpay",
      "creation": {...CreationMetadata...},
      "callbacks": [{...CallbackMetadata...}, ...],
      "callback_processed_at": "2026-01-01T00:00:00+00:00"
    }

Merging is append-only: keys already present in the bag are never dropped,
callback entries are appended, and the raw gateway payload is stored verbatim
under its own key so it can never overwrite creation metadata.
"""

import copy
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional, Union

from common.helpers import now_iso


@dataclass(frozen=True)
class CreationMetadata:
    """What we sent and got back when the bill was created."""
    provider: str
    bill_id: str
    payment_url: str
    amount_minor: int
    callback_url: str
    redirect_url: str
    bill_name: str = ""
    bill_description: str = ""
    collection_id: Optional[str] = None     # Billplz
    category_code: Optional[str] = None     # ToyyibPay
    created_at: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class CallbackMetadata:
    """One reconciliation event: an inbound callback/redirect or a bill query."""
    provider: str
    bill_id: str
    status: Optional[str]
    payload: Dict[str, Any]
    source: str = "callback"                # callback / redirect / query
    received_at: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["payload"] = dict(self.payload)
        return data


PaymentMetadata = Union[CreationMetadata, CallbackMetadata]


def merge_payment_data(existing: Optional[Dict[str, Any]], entry: PaymentMetadata) -> Dict[str, Any]:
    """Return a NEW dict with `entry` merged into `existing` (which is left untouched)."""
    data = copy.deepcopy(existing) if existing else {}

    if isinstance(entry, CreationMetadata):
        # bill_id is set once per contribution
        if data.get("creation"):
            raise ValueError(f"Bill {data['creation'].get('bill_id')} already recorded; refusing {entry.bill_id}")
        data["provider"] = entry.provider
        data["creation"] = entry.to_dict()
    elif isinstance(entry, CallbackMetadata):
        data.setdefault("provider", entry.provider)
        callbacks = list(data.get("callbacks") or [])
        callbacks.append(entry.to_dict())
        data["callbacks"] = callbacks
        data["callback_processed_at"] = entry.received_at
    else:
        raise TypeError(f"Unsupported payment metadata: {type(entry).__name__}")

    return data


def latest_callback(payment_data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    callbacks = (payment_data or {}).get("callbacks") or []
    return callbacks[-1] if callbacks else None
