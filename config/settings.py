"""
Khairat Payments - Centralized Configuration
=============================================
All environment variables and constants are loaded here.
No other module should call os.getenv() directly.
"""

import os
import sys
from dotenv import load_dotenv

load_dotenv()


# ==========================================
# 🗄️ Database
# ==========================================
DB_USER = os.getenv("DB_USER")
DB_PASSWORD = os.getenv("DB_PASSWORD")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME")

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    if not all([DB_USER, DB_PASSWORD, DB_HOST, DB_NAME]):
        print("[ERROR] Critical: Database config missing in .env (DATABASE_URL or DB_USER, DB_PASSWORD, DB_HOST, DB_NAME)")
        sys.exit(1)
    DATABASE_URL = f"postgresql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"


# ==========================================
# 💳 Payment Gateways
# ==========================================
# Per-mosque credentials live in the payment_providers table, not here.
BILLPLZ_API_URL = os.getenv("BILLPLZ_API_URL", "https://www.billplz.com/api/v3")
BILLPLZ_SANDBOX_API_URL = os.getenv("BILLPLZ_SANDBOX_API_URL", "https://www.billplz-sandbox.com/api/v3")

TOYYIBPAY_URL = os.getenv("TOYYIBPAY_URL", "https://toyyibpay.com")
TOYYIBPAY_SANDBOX_URL = os.getenv("TOYYIBPAY_SANDBOX_URL", "https://dev.toyyibpay.com")

GATEWAY_TIMEOUT = float(os.getenv("GATEWAY_TIMEOUT") or "15")


# ==========================================
# 🔄 Reconciliation
# ==========================================
RECONCILE_ENABLED = os.getenv("RECONCILE_ENABLED", "true").lower() == "true"
RECONCILE_INTERVAL_MINUTES = int(os.getenv("RECONCILE_INTERVAL_MINUTES") or "15")
RECONCILE_MIN_AGE_MINUTES = int(os.getenv("RECONCILE_MIN_AGE_MINUTES") or "30")


# ==========================================
# 🔧 App
# ==========================================
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO").upper()

# Base URL for callbacks
BASE_URL = os.getenv("BASE_URL", "http://127.0.0.1:8000").rstrip("/")
PAYMENT_RESULT_PATH = os.getenv("PAYMENT_RESULT_PATH", "/khairat/payment-result")
