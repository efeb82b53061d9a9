from datetime import timedelta

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from pymongo.database import Database

from config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from db import get_db
from errors import AuthenticationError, ForbiddenError
from models import AdminType, ApprovalStatus, Role
from utils import parse_object_id, utcnow

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/token")


# Generate JWT token
def create_access_token(
    data: dict,
    secret_key: str = SECRET_KEY,
    algorithm: str = ALGORITHM,
    expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES,
) -> str:
    expire = utcnow() + timedelta(minutes=expires_minutes)
    to_encode = data.copy()
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, secret_key, algorithm=algorithm)


def token_for_user(user: dict) -> str:
    # Keep the payload minimal; role/admin_type allow cheap authorization checks
    return create_access_token({
        "sub": str(user["_id"]),
        "role": user["role"],
        "admin_type": user.get("admin_type"),
    })


# Decode JWT token
def decode_access_token(token: str, secret_key: str = SECRET_KEY, algorithm: str = ALGORITHM) -> dict:
    try:
        return jwt.decode(token, secret_key, algorithms=[algorithm])
    except ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except JWTError:
        raise AuthenticationError("Token is invalid")


def get_current_user(token: str = Depends(oauth2_scheme), db: Database = Depends(get_db)) -> dict:
    payload = decode_access_token(token)
    user_id = parse_object_id(payload.get("sub"))
    user = db.users.find_one({"_id": user_id}) if user_id else None
    if not user or not user.get("is_active", True):
        raise AuthenticationError()
    return user


def require_role(*roles: Role):
    allowed = {role.value for role in roles}

    def dependency(user: dict = Depends(get_current_user)) -> dict:
        if user["role"] not in allowed:
            raise ForbiddenError()
        return user

    return dependency


def ensure_eligible(user: dict) -> None:
    """Students must be OTP-verified on both channels and approved by an admin."""
    if not user.get("is_email_verified") or not user.get("is_mobile_verified"):
        raise ForbiddenError("Please verify email and mobile via OTP first.")
    if user["role"] in (Role.VOTER.value, Role.CANDIDATE.value):
        if user.get("approval_status") != ApprovalStatus.APPROVED.value:
            raise ForbiddenError("Your account is pending admin approval.")


def require_eligible(*roles: Role):
    role_dependency = require_role(*roles)

    def dependency(user: dict = Depends(role_dependency)) -> dict:
        ensure_eligible(user)
        return user

    return dependency


def has_admin_type(user: dict, *admin_types: AdminType) -> bool:
    if user["role"] != Role.ADMIN.value:
        return False
    # SUPER_ADMIN can do everything
    if user.get("admin_type") == AdminType.SUPER_ADMIN.value:
        return True
    return user.get("admin_type") in {admin_type.value for admin_type in admin_types}


def require_admin_type(*admin_types: AdminType):
    def dependency(user: dict = Depends(get_current_user)) -> dict:
        if not has_admin_type(user, *admin_types):
            raise ForbiddenError()
        return user

    return dependency


def require_super_admin(user: dict = Depends(get_current_user)) -> dict:
    if user["role"] != Role.ADMIN.value or user.get("admin_type") != AdminType.SUPER_ADMIN.value:
        raise ForbiddenError()
    return user

