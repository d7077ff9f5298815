import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./fopd.db")
MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "minio:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "signing")
MINIO_SECURE = os.getenv("MINIO_SECURE", "false").lower() == "true"
SECRET_KEY = os.getenv("SECRET_KEY", "devsecret")
SIGNATURE_ENCRYPTION_SECRET = os.getenv("SIGNATURE_ENCRYPTION_SECRET", "dev-secret-key-change-in-production")
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
ADMIN_ACCESS_TOKEN = os.getenv("ADMIN_ACCESS_TOKEN", "admin-test-token")
PAYMENT_WEBHOOK_SECRET = os.getenv("PAYMENT_WEBHOOK_SECRET", "")
ARABIC_FONT_PATH = os.getenv("ARABIC_FONT_PATH")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

SESSION_TTL_MINUTES = int(os.getenv("SESSION_TTL_MINUTES", "30"))
OTP_TTL_MINUTES = int(os.getenv("OTP_TTL_MINUTES", "10"))
INVITATION_TTL_DAYS = int(os.getenv("INVITATION_TTL_DAYS", "7"))
REQUIRED_CO_OWNERS = 4
MAX_CO_OWNER_SLOTS = 4
HANDOVER_GRACE_DAYS = 60
