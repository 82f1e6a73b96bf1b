import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "marketplace")

JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production")
JWT_ALGORITHM = "HS256"

RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET", "")

SHIPROCKET_EMAIL = os.getenv("SHIPROCKET_EMAIL", "")
SHIPROCKET_PASSWORD = os.getenv("SHIPROCKET_PASSWORD", "")
SHIPROCKET_PICKUP_NAME = os.getenv("SHIPROCKET_PICKUP_NAME", "Home")

RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
EMAIL_FROM = os.getenv("EMAIL_FROM", "Marketplace <orders@example.com>")

# Bearer token expected by scheduled jobs such as the tracking sync
CRON_SECRET = os.getenv("CRON_SECRET", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))

HTTP_TIMEOUT = 15

# ---------- Business rules (whole rupees) ----------
PLATFORM_FEE = 20
SHIPPING_FEE = 50
FREE_SHIPPING_THRESHOLD = 500
TAX_RATE = float(os.getenv("TAX_RATE", "0"))
RETURN_WINDOW_DAYS = 7
PAYMENT_METHODS = ("cod", "online", "card", "upi", "wallet")
