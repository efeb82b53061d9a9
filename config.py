import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


# MongoDB configuration
MONGO_URI = os.getenv("MONGO_URL", "mongodb://127.0.0.1:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "college_voting")

# Cloudinary configuration
CLOUDINARY_NAME = os.getenv("CLOUD_NAME")
CLOUDINARY_API_KEY = os.getenv("API_KEY")
CLOUDINARY_API_SECRET = os.getenv("API_SECRET")
MAX_UPLOAD_MB = _env_int("MAX_UPLOAD_MB", 5)

# JWT configuration
SECRET_KEY = os.getenv("SECRET_KEY", "dev_secret_change_me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = _env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7)

# OTP configuration
OTP_LENGTH = _env_int("OTP_LENGTH", 6)
OTP_TTL_MINUTES = _env_int("OTP_TTL_MINUTES", 10)
OTP_COOLDOWN_SECONDS = _env_int("OTP_COOLDOWN_SECONDS", 60)
PASSWORD_RESET_TTL_MINUTES = 15

# Email / SMS delivery
EMAIL_FROM_NAME = os.getenv("EMAIL_FROM_NAME", "College Voting System")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "no-reply@college.edu")
SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = _env_int("SMTP_PORT", 587)
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASS = os.getenv("SMTP_PASS")
SMS_PROVIDER = os.getenv("SMS_PROVIDER", "twilio")
TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
TWILIO_FROM_NUMBER = os.getenv("TWILIO_FROM_NUMBER")
CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:5173")

# Election auto-close sweep
SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED", True)
AUTO_CLOSE_INTERVAL_SECONDS = _env_int("AUTO_CLOSE_INTERVAL_SECONDS", 60)

# Registration policy
VOTER_AUTO_APPROVE = _env_bool("VOTER_AUTO_APPROVE", False)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]
