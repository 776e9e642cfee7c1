import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as car_rental.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "car_rental.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Build tables on startup instead of running migrations (dev/tests only)
    AUTO_CREATE_TABLES = os.getenv("AUTO_CREATE_TABLES", "false").lower() == "true"

    # Bearer token lifetime: 24 hours
    SESSION_LIFETIME_SECONDS = int(os.getenv("SESSION_LIFETIME_SECONDS", str(24 * 60 * 60)))

    # Idle timeout: 2 hours
    IDLE_TIMEOUT_SECONDS = int(os.getenv("IDLE_TIMEOUT_SECONDS", str(2 * 60 * 60)))

    # Password policy
    PASSWORD_MIN_LEN = int(os.getenv("PASSWORD_MIN_LEN", "6"))
    PASSWORD_MAX_LEN = 72
    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

    # Car image uploads
    UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER", os.path.join(BASE_DIR, "uploads"))
    MAX_IMAGES_PER_UPLOAD = 5
    MAX_IMAGE_BYTES = 5 * 1024 * 1024
    MAX_CONTENT_LENGTH = MAX_IMAGES_PER_UPLOAD * MAX_IMAGE_BYTES + 1024 * 1024

    # Stripe checkout
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_SUCCESS_URL = os.getenv(
        "STRIPE_SUCCESS_URL",
        "http://localhost:5173/payment-success?session_id={CHECKOUT_SESSION_ID}"
    )
    STRIPE_CANCEL_URL = os.getenv("STRIPE_CANCEL_URL", "http://localhost:5173/payment-cancel")
    PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "usd")

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Basic app settings
    DEBUG = False
