"""
Accounts: registration, login, OTP verification, password reset, approvals.

Candidate registration writes two documents (the user and its
CandidateProfile). If the profile insert fails, the user insert is undone
before the error propagates, so no half-registered candidate is left behind.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from bson.objectid import ObjectId
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from audit import log_admin_action
from auth import token_for_user
from config import CLIENT_URL, PASSWORD_RESET_TTL_MINUTES, VOTER_AUTO_APPROVE
from elections import find_position, get_election
from errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PreconditionFailedError,
    ValidationFailedError,
)
from models import (
    AdminCreate,
    ApprovalStatus,
    ApprovalUpdate,
    CandidateRegister,
    Role,
    VoterRegister,
)
from notifications import send_email_otp, send_mobile_otp, send_password_reset
from utils import (
    assert_otp_cooldown,
    generate_numeric_otp,
    hash_password,
    hash_reset_token,
    new_otp_state,
    parse_object_id,
    pwd_context,
    utcnow,
    verify_password,
)

logger = logging.getLogger(__name__)

OTP_CHANNELS = {
    "email": ("email_otp", "is_email_verified"),
    "mobile": ("mobile_otp", "is_mobile_verified"),
}


def _assert_unique_identity(db: Database, email: str, mobile: str, key: str, value: str) -> None:
    exists = db.users.find_one({"$or": [{"email": email}, {"mobile": mobile}, {key: value}]}, {"_id": 1})
    if exists:
        raise ConflictError(f"User already exists with same email/mobile/{key}")


def _student_document(data: VoterRegister, role: Role, approval_status: ApprovalStatus,
                      now: datetime) -> Tuple[dict, str, str]:
    email_code = generate_numeric_otp()
    mobile_code = generate_numeric_otp()
    user = {
        "full_name": data.full_name,
        "email": data.email.lower(),
        "mobile": data.mobile,
        "password_hash": hash_password(data.password),
        "role": role.value,
        "approval_status": approval_status.value,
        "enrollment_id": data.enrollment_id,
        "scholar_or_roll_number": data.scholar_or_roll_number,
        "department": data.department,
        "semester_or_year": data.semester_or_year,
        "email_otp": new_otp_state(email_code, now),
        "mobile_otp": new_otp_state(mobile_code, now),
        "is_email_verified": False,
        "is_mobile_verified": False,
        "is_active": True,
        "created_at": now,
        "updated_at": now,
    }
    return user, email_code, mobile_code


def _deliver_otps(user: dict, email_code: str, mobile_code: str) -> None:
    # Sent after the write so cooldown timestamps are already persisted
    send_email_otp(user["email"], email_code)
    send_mobile_otp(user["mobile"], mobile_code)


def register_voter(db: Database, data: VoterRegister) -> dict:
    _assert_unique_identity(db, data.email.lower(), data.mobile, "enrollment_id", data.enrollment_id)

    status = ApprovalStatus.APPROVED if VOTER_AUTO_APPROVE else ApprovalStatus.PENDING
    user, email_code, mobile_code = _student_document(data, Role.VOTER, status, utcnow())
    try:
        user["_id"] = db.users.insert_one(user).inserted_id
    except DuplicateKeyError:
        raise ConflictError("User already exists with same email/mobile/enrollment_id")

    logger.info("Registered voter %s (%s)", user["_id"], status.value)
    _deliver_otps(user, email_code, mobile_code)
    return user


def register_candidate(db: Database, data: CandidateRegister) -> Tuple[dict, dict]:
    election = get_election(db, data.election_id)
    position = find_position(election, data.position_id)
    if not position:
        raise ValidationFailedError(
            "Invalid position_id for this election", details={"position_id": data.position_id}
        )
    _assert_unique_identity(db, data.email.lower(), data.mobile, "enrollment_id", data.enrollment_id)

    now = utcnow()
    user, email_code, mobile_code = _student_document(data, Role.CANDIDATE, ApprovalStatus.PENDING, now)
    try:
        user["_id"] = db.users.insert_one(user).inserted_id
    except DuplicateKeyError:
        raise ConflictError("User already exists with same email/mobile/enrollment_id")

    profile = {
        "user_id": user["_id"],
        "election_id": election["_id"],
        "position_id": position["_id"],
        "photo_url": data.photo_url,
        "election_symbol_url": data.election_symbol_url,
        "manifesto": data.manifesto,
        "created_at": now,
        "updated_at": now,
    }
    try:
        profile["_id"] = db.candidate_profiles.insert_one(profile).inserted_id
    except Exception:
        logger.exception("Candidate profile write failed; rolling back user %s", user["_id"])
        db.users.delete_one({"_id": user["_id"]})
        raise

    logger.info("Registered candidate %s for election %s", user["_id"], election["_id"])
    _deliver_otps(user, email_code, mobile_code)
    return user, profile


def authenticate(db: Database, identifier: str, password: str) -> dict:
    user = db.users.find_one({
        "$or": [
            {"email": identifier.lower()},
            {"enrollment_id": identifier},
            {"admin_id": identifier},
        ]
    })
    if not user:
        raise AuthenticationError("Invalid credentials")
    if not user.get("is_active", True):
        raise ForbiddenError("Account disabled")
    if not verify_password(password, user["password_hash"]):
        raise AuthenticationError("Invalid credentials")

    if user["role"] == Role.CANDIDATE.value:
        if not user.get("is_email_verified") or not user.get("is_mobile_verified"):
            raise ForbiddenError("Please verify Email & Mobile OTP before logging in.")
        if user.get("approval_status") != ApprovalStatus.APPROVED.value:
            raise ForbiddenError("Candidate approval pending.")
    return user


def login(db: Database, identifier: str, password: str) -> Tuple[str, dict]:
    user = authenticate(db, identifier, password)
    now = utcnow()
    db.users.update_one({"_id": user["_id"]}, {"$set": {"last_login_at": now}})
    user["last_login_at"] = now
    return token_for_user(user), user


def _find_by_channel(db: Database, channel: str, address: str) -> dict:
    query = {"email": address.lower()} if channel == "email" else {"mobile": address}
    user = db.users.find_one(query)
    if not user:
        raise NotFoundError("User not found")
    return user


def resend_otp(db: Database, channel: str, address: str, now: Optional[datetime] = None) -> None:
    otp_field, _ = OTP_CHANNELS[channel]
    user = _find_by_channel(db, channel, address)
    now = now or utcnow()

    assert_otp_cooldown((user.get(otp_field) or {}).get("last_sent_at"), now)

    code = generate_numeric_otp()
    db.users.update_one({"_id": user["_id"]}, {"$set": {otp_field: new_otp_state(code, now), "updated_at": now}})

    if channel == "email":
        send_email_otp(user["email"], code)
    else:
        send_mobile_otp(user["mobile"], code)


def verify_otp(db: Database, channel: str, address: str, code: str, now: Optional[datetime] = None) -> None:
    otp_field, verified_field = OTP_CHANNELS[channel]
    user = _find_by_channel(db, channel, address)
    now = now or utcnow()
    state = user.get(otp_field) or {}

    if not state.get("code_hash") or not state.get("expires_at") or state["expires_at"] < now:
        raise ValidationFailedError("Invalid or expired OTP")

    ok = pwd_context.verify(str(code), state["code_hash"])
    update = {f"{otp_field}.attempts": int(state.get("attempts") or 0) + 1, "updated_at": now}
    if ok:
        # Clear the hash so the code cannot be reused
        update.update({
            verified_field: True,
            f"{otp_field}.verified_at": now,
            f"{otp_field}.code_hash": None,
        })
    db.users.update_one({"_id": user["_id"]}, {"$set": update})

    if not ok:
        raise ValidationFailedError("Invalid or expired OTP")
    logger.info("User %s verified %s", user["_id"], channel)


def forgot_password(db: Database, email: str) -> None:
    user = db.users.find_one({"email": email.lower()})
    if not user:
        raise NotFoundError("User not found")

    token = secrets.token_hex(32)
    db.users.update_one({"_id": user["_id"]}, {"$set": {
        "reset_password_token": hash_reset_token(token),
        "reset_password_expires": utcnow() + timedelta(minutes=PASSWORD_RESET_TTL_MINUTES),
    }})
    send_password_reset(user["email"], f"{CLIENT_URL}/reset-password/{token}")


def reset_password(db: Database, token: str, password: str) -> None:
    user = db.users.find_one({
        "reset_password_token": hash_reset_token(token),
        "reset_password_expires": {"$gt": utcnow()},
    })
    if not user:
        raise ValidationFailedError("Invalid or expired token")

    db.users.update_one(
        {"_id": user["_id"]},
        {
            "$set": {"password_hash": hash_password(password), "updated_at": utcnow()},
            "$unset": {"reset_password_token": "", "reset_password_expires": ""},
        },
    )
    logger.info("Password reset for user %s", user["_id"])


# ---- Approvals (verification admins) ----

def list_voters(db: Database, status: ApprovalStatus = ApprovalStatus.PENDING) -> List[dict]:
    return list(db.users.find({"role": Role.VOTER.value, "approval_status": status.value}).sort("created_at", DESCENDING))


def list_candidates(db: Database, status: ApprovalStatus = ApprovalStatus.PENDING) -> List[dict]:
    users = list(
        db.users.find({"role": Role.CANDIDATE.value, "approval_status": status.value}).sort("created_at", DESCENDING)
    )
    if not users:
        return []

    profiles = {p["user_id"]: p for p in db.candidate_profiles.find({"user_id": {"$in": [u["_id"] for u in users]}})}
    elections = {
        e["_id"]: e
        for e in db.elections.find({"_id": {"$in": list({p["election_id"] for p in profiles.values()})}})
    }

    rows = []
    for user in users:
        profile = profiles.get(user["_id"])
        election = elections.get(profile["election_id"]) if profile else None
        position = find_position(election, profile["position_id"]) if election else None
        rows.append({
            "user": {
                "_id": user["_id"],
                "full_name": user["full_name"],
                "email": user["email"],
                "enrollment_id": user.get("enrollment_id"),
            },
            "profile_id": profile["_id"] if profile else None,
            "election": {"_id": election["_id"], "name": election["name"], "status": election["status"]}
            if election else None,
            "position": {"_id": position["_id"], "title": position["title"]} if position else None,
        })
    return rows


def set_user_approval(db: Database, user_id, data: ApprovalUpdate, admin: dict,
                      client: Optional[dict] = None) -> dict:
    oid = parse_object_id(user_id)
    user = db.users.find_one({"_id": oid}) if oid else None
    if not user:
        raise NotFoundError("User not found")
    if user["role"] not in (Role.VOTER.value, Role.CANDIDATE.value):
        raise PreconditionFailedError("Only VOTER/CANDIDATE accounts require approval")
    if data.status == ApprovalStatus.PENDING:
        raise ValidationFailedError("Approval status must be APPROVED or REJECTED")

    now = utcnow()
    update = {
        "approval_status": data.status.value,
        "approval_note": data.note,
        "approved_at": now,
        "approved_by": admin["_id"],
        "updated_at": now,
    }
    db.users.update_one({"_id": user["_id"]}, {"$set": update})
    user.update(update)

    action = "APPROVE_USER" if data.status == ApprovalStatus.APPROVED else "REJECT_USER"
    log_admin_action(
        db, admin["_id"], action, "User", user["_id"],
        meta={"role": user["role"], "note": data.note}, **(client or {}),
    )
    return user


# ---- Admin accounts (super admin) ----

def create_admin(db: Database, data: AdminCreate, creator: Optional[dict] = None,
                 client: Optional[dict] = None) -> dict:
    email = data.email.lower()
    _assert_unique_identity(db, email, data.mobile, "admin_id", data.admin_id)

    now = utcnow()
    admin = {
        "_id": ObjectId(),
        "full_name": data.full_name,
        "email": email,
        "mobile": data.mobile,
        "password_hash": hash_password(data.password),
        "role": Role.ADMIN.value,
        "admin_type": data.admin_type.value,
        "admin_id": data.admin_id,
        # Internal accounts are treated as approved and verified
        "approval_status": ApprovalStatus.APPROVED.value,
        "is_email_verified": True,
        "is_mobile_verified": True,
        "is_active": True,
        "created_at": now,
        "updated_at": now,
    }
    try:
        db.users.insert_one(admin)
    except DuplicateKeyError:
        raise ConflictError("Admin already exists with same email/mobile/admin_id")

    if creator is not None:
        log_admin_action(
            db, creator["_id"], "CREATE_ADMIN", "User", admin["_id"],
            meta={"admin_type": admin["admin_type"], "admin_id": admin["admin_id"]}, **(client or {}),
        )
    logger.info("Created %s account %s", admin["admin_type"], admin["admin_id"])
    return admin


def list_admins(db: Database) -> List[dict]:
    return list(db.users.find({"role": Role.ADMIN.value}).sort("created_at", DESCENDING))
