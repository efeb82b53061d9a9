import logging
from typing import List, Optional

from pymongo.database import Database

from elections import find_position, get_election
from errors import NotFoundError, PreconditionFailedError, ValidationFailedError
from models import EDITABLE_STATUSES, ApprovalStatus, CandidateProfileUpdate, Role
from utils import parse_object_id, utcnow

logger = logging.getLogger(__name__)

PUBLIC_CANDIDATE_FIELDS = {"full_name": 1, "enrollment_id": 1, "department": 1, "semester_or_year": 1}


def get_my_profile(db: Database, election_id, user: dict) -> dict:
    oid = parse_object_id(election_id)
    profile = db.candidate_profiles.find_one({"election_id": oid, "user_id": user["_id"]}) if oid else None
    if not profile:
        raise NotFoundError("Candidate profile not found for this election")
    return profile


def update_my_profile(db: Database, election_id, user: dict, data: CandidateProfileUpdate) -> dict:
    """
    Edit rules:
    - photo, symbol and position are locked once the candidate is approved
    - the manifesto stays editable until the election starts
    """
    election = get_election(db, election_id)
    profile = get_my_profile(db, election["_id"], user)
    changes = data.model_dump(exclude_unset=True)
    approved = user.get("approval_status") == ApprovalStatus.APPROVED.value
    update = {}

    if approved:
        locked = (
            ("photo_url", profile.get("photo_url"), "Photo is locked after approval."),
            ("election_symbol_url", profile.get("election_symbol_url"), "Election symbol is locked after approval."),
            ("position_id", str(profile.get("position_id")), "Position is locked after approval."),
        )
        for field, current, message in locked:
            if changes.get(field) is not None and changes[field] != current:
                raise PreconditionFailedError(message, details={"field": field})
    else:
        for field in ("photo_url", "election_symbol_url"):
            if field in changes:
                update[field] = changes[field]
        if changes.get("position_id") is not None:
            position = find_position(election, changes["position_id"])
            if not position:
                raise ValidationFailedError(
                    "Invalid position_id for this election", details={"position_id": changes["position_id"]}
                )
            update["position_id"] = position["_id"]

    if "manifesto" in changes:
        if election["status"] not in EDITABLE_STATUSES:
            raise PreconditionFailedError("Manifesto cannot be edited after election starts.")
        update["manifesto"] = changes["manifesto"]

    if update:
        update["updated_at"] = utcnow()
        db.candidate_profiles.update_one({"_id": profile["_id"]}, {"$set": update})
        profile.update(update)
        logger.info("Candidate %s updated profile fields %s", user["_id"], sorted(update))
    return profile


def list_approved_candidates(db: Database, election_id, position_id: Optional[str] = None) -> List[dict]:
    election = get_election(db, election_id)

    query = {"election_id": election["_id"]}
    if position_id:
        query["position_id"] = parse_object_id(position_id)
    profiles = list(db.candidate_profiles.find(query))

    users = {
        u["_id"]: u
        for u in db.users.find(
            {
                "_id": {"$in": [p["user_id"] for p in profiles]},
                "role": Role.CANDIDATE.value,
                "approval_status": ApprovalStatus.APPROVED.value,
                "is_active": True,
            },
            PUBLIC_CANDIDATE_FIELDS,
        )
    }

    return [
        {
            "candidate_user_id": profile["user_id"],
            "user": users[profile["user_id"]],
            "profile": {
                "id": profile["_id"],
                "election_id": profile["election_id"],
                "position_id": profile["position_id"],
                "photo_url": profile.get("photo_url"),
                "election_symbol_url": profile.get("election_symbol_url"),
                "manifesto": profile.get("manifesto"),
            },
        }
        for profile in profiles
        if profile["user_id"] in users
    ]
