"""
Ballot admission control.

A ballot is admitted only when every check passes, in this order:

1. the election is RUNNING and its deadline has not passed
2. the election has at least one position
3. the ballot covers exactly the configured positions, once each
4. every chosen candidate is an approved, active CANDIDATE
5. every (candidate, position) pair matches a CandidateProfile of the election
6. the vote insert succeeds against the unique indexes on
   (election_id, voter_user_id) and (election_id, enrollment_id)

The first failure aborts with nothing written. The one exception is an
election found past its deadline, which is ended on the spot. Step 6 relies on
the datastore's unique indexes instead of a read-then-write check, so
concurrent submissions for the same voter yield exactly one stored ballot.
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Iterable, List, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from elections import RUNNING, end_if_expired, get_election
from errors import (
    AlreadyVotedError,
    ForbiddenError,
    PreconditionFailedError,
    ValidationFailedError,
)
from models import ApprovalStatus, Role, Selection, VoteStatus
from utils import parse_object_id, utcnow

logger = logging.getLogger(__name__)


def _assert_voter_eligible(voter: dict) -> None:
    if voter.get("role") != Role.VOTER.value:
        raise ForbiddenError("Only voters can cast ballots")
    if not voter.get("is_active", True):
        raise ForbiddenError("Account disabled")
    if not voter.get("is_email_verified") or not voter.get("is_mobile_verified"):
        raise PreconditionFailedError("Please verify email and mobile via OTP first.")
    if voter.get("approval_status") != ApprovalStatus.APPROVED.value:
        raise PreconditionFailedError("Your account is pending admin approval.")
    if not voter.get("enrollment_id"):
        raise PreconditionFailedError("Enrollment ID missing on voter profile")


def check_completeness(configured_position_ids: List[str], selected_position_ids: List[str]) -> None:
    """Raise unless the selected ids are exactly the configured ids, each once."""
    configured = set(configured_position_ids)
    counts = Counter(selected_position_ids)

    missing = [pid for pid in configured_position_ids if pid not in counts]
    extra = [pid for pid in counts if pid not in configured]
    duplicates = [pid for pid, count in counts.items() if count > 1]

    if not (missing or extra or duplicates):
        return

    if missing:
        message = "Incomplete ballot: please vote for all positions."
    elif extra:
        message = "Invalid ballot: contains unknown position id."
    else:
        message = "Invalid ballot: duplicate position id found."

    raise ValidationFailedError(message, details={
        "missing_position_ids": missing,
        "extra_position_ids": extra,
        "duplicate_position_ids": duplicates,
    })


def _check_candidates(db: Database, election_id, selections: List[Selection]) -> None:
    candidate_ids = list(dict.fromkeys(s.candidate_user_id for s in selections))
    object_ids = [oid for oid in (parse_object_id(cid) for cid in candidate_ids) if oid]

    approved = {
        str(user["_id"])
        for user in db.users.find(
            {
                "_id": {"$in": object_ids},
                "role": Role.CANDIDATE.value,
                "approval_status": ApprovalStatus.APPROVED.value,
                "is_active": True,
            },
            {"_id": 1},
        )
    }
    invalid = [cid for cid in candidate_ids if cid not in approved]
    if invalid:
        raise ValidationFailedError(
            "Invalid candidate selection (candidate not approved / not found)",
            details={"invalid_candidate_user_ids": invalid},
        )

    contesting = {
        (str(profile["user_id"]), str(profile["position_id"]))
        for profile in db.candidate_profiles.find({"election_id": election_id}, {"user_id": 1, "position_id": 1})
    }
    unbound = [
        {"position_id": s.position_id, "candidate_user_id": s.candidate_user_id}
        for s in selections
        if (s.candidate_user_id, s.position_id) not in contesting
    ]
    if unbound:
        raise ValidationFailedError(
            "Invalid selection: candidate is not contesting for the chosen position in this election.",
            details={"invalid_selections": unbound},
        )


def admit(
    db: Database,
    election_id,
    voter: dict,
    selections: Iterable[Selection],
    *,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Validate a ballot and persist it as a single immutable vote document."""
    selections = list(selections)
    _assert_voter_eligible(voter)

    election = get_election(db, election_id)
    if election["status"] != RUNNING:
        raise PreconditionFailedError(
            "Voting is not allowed. Election is not running.",
            details={"status": election["status"]},
        )

    # The sweep may not have fired yet; never admit past the deadline
    election = end_if_expired(db, election, now or utcnow())
    if election["status"] != RUNNING:
        raise PreconditionFailedError("Voting is closed. Election has ended.", details={"status": election["status"]})

    positions = election.get("positions") or []
    if not positions:
        raise PreconditionFailedError("Election has no positions configured")

    check_completeness([str(p["_id"]) for p in positions], [s.position_id for s in selections])
    _check_candidates(db, election["_id"], selections)

    vote = {
        "election_id": election["_id"],
        "voter_user_id": voter["_id"],
        "enrollment_id": voter["enrollment_id"],
        "selections": [
            {
                "position_id": parse_object_id(s.position_id),
                "candidate_user_id": parse_object_id(s.candidate_user_id),
            }
            for s in selections
        ],
        "ip": ip,
        "user_agent": user_agent,
        "created_at": now or utcnow(),
    }
    try:
        vote["_id"] = db.votes.insert_one(vote).inserted_id
    except DuplicateKeyError:
        logger.info("Rejected duplicate ballot from voter %s in election %s", voter["_id"], election["_id"])
        raise AlreadyVotedError(str(election["_id"]))

    logger.info("Ballot %s admitted for election %s", vote["_id"], election["_id"])
    return vote


def get_status(db: Database, election_id, voter: dict) -> VoteStatus:
    if not voter.get("enrollment_id"):
        raise PreconditionFailedError("Enrollment ID missing on voter profile")

    election = get_election(db, election_id)
    existing = db.votes.find_one(
        {"election_id": election["_id"], "enrollment_id": voter["enrollment_id"]},
        {"_id": 1, "created_at": 1},
    )
    return VoteStatus(has_voted=existing is not None, voted_at=existing["created_at"] if existing else None)
