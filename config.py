import os

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "notebook_store")

# Session/JWT
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", str(60 * 24 * 30)))
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session-token")
SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"

CART_TTL_DAYS = int(os.getenv("CART_TTL_DAYS", "7"))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Payment gateway (SANDBOX or PRODUCTION)
PAYMENT_ENV = os.getenv("PAYMENT_ENV", "SANDBOX").upper()
PAYMENT_CLIENT_ID = os.getenv("PAYMENT_CLIENT_ID", "")
PAYMENT_CLIENT_SECRET = os.getenv("PAYMENT_CLIENT_SECRET", "")
PAYMENT_CLIENT_VERSION = int(os.getenv("PAYMENT_CLIENT_VERSION", "1"))
PAYMENT_TIMEOUT = float(os.getenv("PAYMENT_TIMEOUT", "10"))
PAYMENT_WEBHOOK_USERNAME = os.getenv("PAYMENT_WEBHOOK_USERNAME", "")
PAYMENT_WEBHOOK_PASSWORD = os.getenv("PAYMENT_WEBHOOK_PASSWORD", "")

PORT = int(os.getenv("PORT", "8000"))
