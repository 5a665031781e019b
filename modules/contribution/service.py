"""
Contribution Service
=====================
Persistence seam for contributions used by the payment layer.
Every write commits: a bill that exists at the gateway must be durable
locally before the caller is told it succeeded.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from common.helpers import now_utc
from modules.contribution.models import KhairatContribution, ContributionStatus
from modules.payment.metadata import CreationMetadata, CallbackMetadata, merge_payment_data

logger = logging.getLogger("khairat.contribution")


class ContributionService:
    """Stateless service: call methods with db session."""

    # ------------------------------------------
    # Lookups
    # ------------------------------------------

    def get_for_mosque(self, db: Session, contribution_id: str, mosque_id: str) -> Optional[KhairatContribution]:
        return (
            db.query(KhairatContribution)
            .filter(
                KhairatContribution.id == contribution_id,
                KhairatContribution.mosque_id == mosque_id,
            )
            .first()
        )

    def get_by_compound_key(
        self, db: Session, contribution_id: str, bill_id: str, for_update: bool = False,
    ) -> Optional[KhairatContribution]:
        """Both halves are required; a bill id alone is never enough to find a row."""
        if not contribution_id or not bill_id:
            return None
        query = db.query(KhairatContribution).filter(
            KhairatContribution.id == contribution_id,
            KhairatContribution.bill_id == bill_id,
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    def list_pending_bills(self, db: Session, older_than_minutes: int = 0, limit: int = 200) -> List[KhairatContribution]:
        """Pending contributions that already have a bill at a gateway."""
        cutoff = now_utc() - timedelta(minutes=older_than_minutes)
        return (
            db.query(KhairatContribution)
            .filter(
                KhairatContribution.status == ContributionStatus.PENDING.value,
                KhairatContribution.bill_id.isnot(None),
                KhairatContribution.payment_method.isnot(None),
                KhairatContribution.updated_at <= cutoff,
            )
            .order_by(KhairatContribution.updated_at)
            .limit(limit)
            .all()
        )

    # ------------------------------------------
    # Writes
    # ------------------------------------------

    def attach_bill(self, db: Session, contribution: KhairatContribution, creation: CreationMetadata) -> KhairatContribution:
        """Link a freshly created bill to the contribution and commit."""
        contribution.payment_method = creation.provider
        contribution.bill_id = creation.bill_id
        contribution.payment_reference = creation.bill_id
        contribution.payment_data = merge_payment_data(contribution.payment_data, creation)
        contribution.updated_at = now_utc()
        self._commit(db)
        logger.info(f"Contribution {contribution.id} linked to {creation.provider} bill {creation.bill_id}")
        return contribution

    def record_callback(
        self, db: Session, contribution: KhairatContribution,
        status: Optional[ContributionStatus], callback: CallbackMetadata,
    ) -> KhairatContribution:
        """Write status + merged payment_data in a single commit."""
        if status is not None:
            contribution.status = status.value
        contribution.payment_data = merge_payment_data(contribution.payment_data, callback)
        contribution.updated_at = now_utc()
        self._commit(db)
        return contribution

    def _commit(self, db: Session):
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise


contribution_service = ContributionService()
