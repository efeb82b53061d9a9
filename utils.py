import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from bson.objectid import ObjectId
from bson.errors import InvalidId
from passlib.context import CryptContext

from config import OTP_COOLDOWN_SECONDS, OTP_LENGTH, OTP_TTL_MINUTES
from errors import RateLimitedError

# Initialize password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Fields that must never leave the service
PRIVATE_USER_FIELDS = ("password_hash", "email_otp", "mobile_otp", "reset_password_token", "reset_password_expires")


# Hash password
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


# Verify password
def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def utcnow() -> datetime:
    """Naive UTC, matching what pymongo hands back from the datastore."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_object_id(value: Any) -> Optional[ObjectId]:
    """Return an ObjectId for ``value`` or None when it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def serialize_document(doc):
    """Convert MongoDB document to JSON-serializable format."""
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, list):
        return [serialize_document(item) for item in doc]
    if isinstance(doc, dict):
        return {key: serialize_document(value) for key, value in doc.items()}
    return doc


def public_user(user: dict) -> dict:
    return serialize_document({k: v for k, v in user.items() if k not in PRIVATE_USER_FIELDS})


# OTP helpers
def generate_numeric_otp(length: int = OTP_LENGTH) -> str:
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


def otp_expiry(now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) + timedelta(minutes=OTP_TTL_MINUTES)


def assert_otp_cooldown(last_sent_at: Optional[datetime], now: Optional[datetime] = None) -> None:
    if not last_sent_at:
        return
    elapsed = ((now or utcnow()) - last_sent_at).total_seconds()
    if elapsed < OTP_COOLDOWN_SECONDS:
        wait_seconds = int(OTP_COOLDOWN_SECONDS - elapsed) + 1
        raise RateLimitedError(f"Please wait {wait_seconds}s before requesting another OTP.", wait_seconds)


def new_otp_state(code: str, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    return {
        "code_hash": pwd_context.hash(code),
        "expires_at": otp_expiry(now),
        "last_sent_at": now,
        "verified_at": None,
        "attempts": 0,
    }


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
