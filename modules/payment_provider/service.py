"""
Payment Provider Service
=========================
Resolves a mosque's stored gateway credentials into a ProviderConfig.

Usage:
    config = provider_service.resolve(db, mosque_id, ProviderType.TOYYIBPAY)
    if config is None:
        ...  # not set up
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from sqlalchemy.orm import Session

from common.exceptions import ConfigurationError, ValidationError
from common.helpers import mask_secret
from modules.payment_provider.models import PaymentProvider, ProviderType

logger = logging.getLogger("khairat.provider")


# credential name -> column on PaymentProvider, all required
CREDENTIAL_COLUMNS: Dict[ProviderType, Dict[str, str]] = {
    ProviderType.BILLPLZ: {
        "api_key": "billplz_api_key",
        "x_signature_key": "billplz_x_signature_key",
        "collection_id": "billplz_collection_id",
    },
    ProviderType.TOYYIBPAY: {
        "secret_key": "toyyibpay_secret_key",
        "category_code": "toyyibpay_category_code",
    },
}


@dataclass(frozen=True)
class ProviderConfig:
    """Immutable snapshot of one mosque's credentials for one provider."""
    mosque_id: str
    provider_type: ProviderType
    is_active: bool = True
    is_sandbox: bool = True
    credentials: Dict[str, str] = field(default_factory=dict)

    def credential(self, name: str) -> str:
        return self.credentials.get(name, "")


def parse_provider_type(value: Union[str, ProviderType, None]) -> ProviderType:
    """Map a caller-supplied tag to ProviderType; unknown tags are a validation error."""
    try:
        return ProviderType(value)
    except ValueError:
        raise ValidationError(f"Unsupported payment provider: {value}")


class PaymentProviderService:
    """Stateless service: call methods with db session."""

    def get_record(
        self, db: Session, mosque_id: str, provider_type: ProviderType,
    ) -> Optional[PaymentProvider]:
        return (
            db.query(PaymentProvider)
            .filter(
                PaymentProvider.mosque_id == mosque_id,
                PaymentProvider.provider_type == provider_type.value,
            )
            .first()
        )

    def resolve(
        self, db: Session, mosque_id: str, provider_type: ProviderType,
    ) -> Optional[ProviderConfig]:
        """
        Returns None when the mosque has no active record for this provider.
        Raises ConfigurationError when the record is active but incomplete.
        """
        record = self.get_record(db, mosque_id, provider_type)
        if not record or not record.is_active:
            return None

        columns = CREDENTIAL_COLUMNS[provider_type]
        credentials = {name: (getattr(record, col) or "").strip() for name, col in columns.items()}
        missing = [name for name, value in credentials.items() if not value]
        if missing:
            logger.warning(
                f"Incomplete {provider_type.value} config for mosque {mosque_id}: missing {missing}"
            )
            raise ConfigurationError(provider_type.value, mosque_id, missing)

        logger.debug(
            f"Resolved {provider_type.value} for mosque {mosque_id} "
            f"(sandbox={record.is_sandbox}, first key={mask_secret(next(iter(credentials.values())))})"
        )
        return ProviderConfig(
            mosque_id=mosque_id,
            provider_type=provider_type,
            is_active=record.is_active,
            is_sandbox=record.is_sandbox,
            credentials=credentials,
        )

    def list_available(self, db: Session, mosque_id: str) -> List[ProviderType]:
        """Provider types that are active AND fully configured for the mosque."""
        available = []
        for provider_type in ProviderType:
            try:
                if self.resolve(db, mosque_id, provider_type):
                    available.append(provider_type)
            except ConfigurationError:
                continue
        return available


provider_service = PaymentProviderService()
