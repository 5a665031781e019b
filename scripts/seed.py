"""
Khairat Payments - Sandbox Seeder
==================================
Seeds a demo mosque with sandbox gateway configs and a few contributions.

Usage:
    python scripts/seed.py          # Seed (idempotent)
    python scripts/seed.py --reset  # Drop all data and reseed

Seeded:
  1. Payment providers (Billplz + ToyyibPay, sandbox) for the demo mosque
  2. Pending contributions ready to be billed

Credentials are read from SEED_* environment variables when present and
fall back to obvious placeholders that the sandbox will reject.
"""

import sys
import os
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.database import SessionLocal, Base, engine
from modules.payment_provider.models import PaymentProvider, ProviderType
from modules.contribution.models import KhairatContribution, ContributionStatus

DEMO_MOSQUE_ID = os.getenv("SEED_MOSQUE_ID", "demo-mosque")


def ensure_tables():
    """Create all tables if they don't exist (safe to call multiple times)."""
    print("[0/2] Ensuring all tables exist...")
    Base.metadata.create_all(bind=engine)
    print("  + All tables OK\n")


def seed():
    db = SessionLocal()
    try:
        print("=" * 50)
        print("  Khairat Payments - Sandbox Seeder")
        print("=" * 50)

        ensure_tables()

        # ==========================================
        # 1. Payment Providers
        # ==========================================
        print("[1/2] Payment Providers")

        providers_data = [
            {
                "provider_type": ProviderType.BILLPLZ.value,
                "billplz_api_key": os.getenv("SEED_BILLPLZ_API_KEY", "sandbox-api-key"),
                "billplz_x_signature_key": os.getenv("SEED_BILLPLZ_X_SIGNATURE_KEY", "sandbox-x-signature"),
                "billplz_collection_id": os.getenv("SEED_BILLPLZ_COLLECTION_ID", "sandbox-collection"),
            },
            {
                "provider_type": ProviderType.TOYYIBPAY.value,
                "toyyibpay_secret_key": os.getenv("SEED_TOYYIBPAY_SECRET_KEY", "sandbox-secret-key"),
                "toyyibpay_category_code": os.getenv("SEED_TOYYIBPAY_CATEGORY_CODE", "sandbox-category"),
            },
        ]
        for data in providers_data:
            existing = (
                db.query(PaymentProvider)
                .filter(
                    PaymentProvider.mosque_id == DEMO_MOSQUE_ID,
                    PaymentProvider.provider_type == data["provider_type"],
                )
                .first()
            )
            if existing:
                print(f"  = exists: {data['provider_type']}")
                continue
            db.add(PaymentProvider(mosque_id=DEMO_MOSQUE_ID, is_active=True, is_sandbox=True, **data))
            print(f"  + {data['provider_type']} (sandbox)")
        db.flush()

        # ==========================================
        # 2. Contributions
        # ==========================================
        print("\n[2/2] Contributions")

        contributions_data = [
            {"contributor_name": "Ahmad bin Abdullah", "amount": Decimal("25.50")},
            {"contributor_name": "Siti Nurhaliza binti Tarudin", "amount": Decimal("50.00")},
            {"contributor_name": "Muhammad Hafiz", "amount": Decimal("10.00")},
        ]
        for data in contributions_data:
            existing = (
                db.query(KhairatContribution)
                .filter(
                    KhairatContribution.mosque_id == DEMO_MOSQUE_ID,
                    KhairatContribution.contributor_name == data["contributor_name"],
                )
                .first()
            )
            if existing:
                print(f"  = exists: {data['contributor_name']} ({existing.status})")
                continue
            contribution = KhairatContribution(
                mosque_id=DEMO_MOSQUE_ID,
                status=ContributionStatus.PENDING.value,
                notes="Seeded sandbox contribution",
                **data,
            )
            db.add(contribution)
            db.flush()
            print(f"  + {contribution.id}: {data['contributor_name']} RM {data['amount']}")

        db.commit()
        print("\nSeed complete.")
        print(f"  Mosque    : {DEMO_MOSQUE_ID}")
        print("  Providers : billplz, toyyibpay (sandbox)")

    except Exception as e:
        db.rollback()
        print(f"\nSeed failed: {e}")
        import traceback
        traceback.print_exc()
        raise
    finally:
        db.close()


def reset_and_seed():
    """Drop all tables and recreate + seed."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    print("All tables recreated")
    seed()


if __name__ == "__main__":
    if "--reset" in sys.argv:
        confirm = input("This will DELETE ALL DATA. Type 'yes' to confirm: ")
        if confirm.strip().lower() == "yes":
            reset_and_seed()
        else:
            print("Aborted.")
    else:
        seed()
