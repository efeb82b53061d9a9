"""
Election lifecycle: configuration, positions and state transitions.

Status only moves forward: DRAFT -> SCHEDULED -> RUNNING -> ENDED. Positions
are frozen once an election is RUNNING. Ending an expired election is a
conditional update on ``status == RUNNING``, so the periodic sweep and the
in-request check in ballot admission can both apply it safely.
"""

import logging
from datetime import datetime
from typing import List, Optional

from bson.objectid import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from audit import log_admin_action
from errors import ConflictError, NotFoundError, PreconditionFailedError
from models import (
    EDITABLE_STATUSES,
    ElectionCreate,
    ElectionStatus,
    ElectionUpdate,
    PositionCreate,
    PositionUpdate,
)
from utils import parse_object_id, to_naive_utc, utcnow

logger = logging.getLogger(__name__)

RUNNING = ElectionStatus.RUNNING.value
ENDED = ElectionStatus.ENDED.value

_STATUS_RANK = {status.value: rank for rank, status in enumerate(ElectionStatus)}


def _audit(db, admin, action, election_id, meta=None, client=None):
    log_admin_action(
        db,
        admin_user_id=admin["_id"],
        action=action,
        entity_type="Election",
        entity_id=election_id,
        meta=meta,
        **(client or {}),
    )


def list_elections(db: Database) -> List[dict]:
    return list(db.elections.find().sort("created_at", DESCENDING))


def get_election(db: Database, election_id) -> dict:
    oid = parse_object_id(election_id)
    election = db.elections.find_one({"_id": oid}) if oid else None
    if not election:
        raise NotFoundError("Election not found", details={"election_id": str(election_id)})
    return election


def find_position(election: dict, position_id) -> Optional[dict]:
    for position in election.get("positions") or []:
        if str(position["_id"]) == str(position_id):
            return position
    return None


def _assert_positions_editable(election: dict) -> None:
    if election["status"] not in EDITABLE_STATUSES:
        raise PreconditionFailedError(
            "Cannot modify positions once election is RUNNING/ENDED",
            details={"status": election["status"]},
        )


def create_election(db: Database, data: ElectionCreate, admin: dict, client: Optional[dict] = None) -> dict:
    now = utcnow()
    election = {
        "name": data.name,
        "description": data.description,
        "status": ElectionStatus.DRAFT.value,
        "starts_at": None,
        "ends_at": to_naive_utc(data.ends_at),
        "started_at": None,
        "ended_at": None,
        "auto_close_enabled": data.auto_close_enabled,
        "results_published": False,
        "positions": [],
        "created_at": now,
        "updated_at": now,
    }
    try:
        election["_id"] = db.elections.insert_one(election).inserted_id
    except DuplicateKeyError:
        raise ConflictError("An election with this name already exists", details={"name": data.name})

    _audit(db, admin, "CREATE_ELECTION", election["_id"], {"name": data.name}, client)
    return election


def update_election(db: Database, election_id, data: ElectionUpdate, admin: dict, client: Optional[dict] = None,
                    now: Optional[datetime] = None) -> dict:
    election = get_election(db, election_id)
    # An explicit null means "leave unchanged"
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    update = {}

    for field in ("name", "description", "auto_close_enabled"):
        if field in changes:
            update[field] = changes[field]
    for field in ("starts_at", "ends_at"):
        if field in changes:
            update[field] = to_naive_utc(changes[field])

    if "results_published" in changes:
        if election["status"] != ENDED:
            raise PreconditionFailedError("You can change results_published only after the election ends.")
        update["results_published"] = bool(changes["results_published"])

    if changes.get("status") is not None:
        target = ElectionStatus(changes["status"]).value
        if target in (RUNNING, ENDED):
            raise PreconditionFailedError("Use the start or stop operations to change RUNNING/ENDED")
        if election["status"] not in EDITABLE_STATUSES:
            raise PreconditionFailedError("Status cannot change once the election is RUNNING/ENDED")
        if _STATUS_RANK[target] < _STATUS_RANK[election["status"]]:
            raise PreconditionFailedError(
                "Election status cannot move backwards",
                details={"from": election["status"], "to": target},
            )
        update["status"] = target

    starts_at = update.get("starts_at", election.get("starts_at"))
    ends_at = update.get("ends_at", election.get("ends_at"))
    if starts_at and ends_at and ends_at <= starts_at:
        raise PreconditionFailedError("ends_at must be after starts_at")
    if election["status"] == RUNNING and "ends_at" in update and update["ends_at"] <= (now or utcnow()):
        raise PreconditionFailedError("ends_at of a running election must be in the future")

    if update:
        update["updated_at"] = utcnow()
        try:
            election = db.elections.find_one_and_update(
                {"_id": election["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            raise ConflictError("An election with this name already exists", details={"name": update.get("name")})

    _audit(db, admin, "UPDATE_ELECTION", election["_id"], {"fields": sorted(changes)}, client)
    return election


def add_position(db: Database, election_id, data: PositionCreate, admin: dict, client: Optional[dict] = None) -> dict:
    election = get_election(db, election_id)
    _assert_positions_editable(election)

    position = {"_id": ObjectId(), "title": data.title, "order": data.order, "max_winners": data.max_winners}
    db.elections.update_one(
        {"_id": election["_id"]},
        {"$push": {"positions": position}, "$set": {"updated_at": utcnow()}},
    )
    _audit(db, admin, "ADD_POSITION", election["_id"], {"position_id": position["_id"], "title": data.title}, client)
    return position


def update_position(db: Database, election_id, position_id, data: PositionUpdate, admin: dict,
                    client: Optional[dict] = None) -> dict:
    election = get_election(db, election_id)
    _assert_positions_editable(election)

    position = find_position(election, position_id)
    if not position:
        raise NotFoundError("Position not found", details={"position_id": str(position_id)})

    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    position.update(changes)
    db.elections.update_one(
        {"_id": election["_id"]},
        {"$set": {"positions": election["positions"], "updated_at": utcnow()}},
    )
    _audit(db, admin, "UPDATE_POSITION", election["_id"], {"position_id": position["_id"], **changes}, client)
    return position


def delete_position(db: Database, election_id, position_id, admin: dict, client: Optional[dict] = None) -> None:
    election = get_election(db, election_id)
    _assert_positions_editable(election)

    position = find_position(election, position_id)
    if not position:
        raise NotFoundError("Position not found", details={"position_id": str(position_id)})

    remaining = [p for p in election["positions"] if p["_id"] != position["_id"]]
    db.elections.update_one(
        {"_id": election["_id"]},
        {"$set": {"positions": remaining, "updated_at": utcnow()}},
    )
    _audit(db, admin, "DELETE_POSITION", election["_id"], {"position_id": position["_id"]}, client)


def start_election(db: Database, election_id, admin: dict, client: Optional[dict] = None,
                   now: Optional[datetime] = None) -> dict:
    election = get_election(db, election_id)
    now = now or utcnow()

    if election["status"] == RUNNING:
        raise PreconditionFailedError("Election already running")
    if election["status"] == ENDED:
        raise PreconditionFailedError("Election already ended")
    if not election.get("positions"):
        raise PreconditionFailedError("Add at least 1 position before starting election")
    if not election.get("ends_at"):
        raise PreconditionFailedError("Set ends_at (timer) before starting election")
    if election["ends_at"] <= now:
        raise PreconditionFailedError("ends_at must be in the future when starting election")

    update = {"status": RUNNING, "started_at": now, "updated_at": now}
    # starts_at is informational; voting is gated by status alone
    if not election.get("starts_at"):
        update["starts_at"] = now

    election = db.elections.find_one_and_update(
        {"_id": election["_id"], "status": {"$in": list(EDITABLE_STATUSES)}},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if not election:
        raise PreconditionFailedError("Election changed state while starting")

    logger.info("Election %s (%s) started, ends at %s", election["name"], election["_id"], election["ends_at"])
    _audit(db, admin, "START_ELECTION", election["_id"],
           {"started_at": now.isoformat(), "ends_at": election["ends_at"].isoformat()}, client)
    return election


def stop_election(db: Database, election_id, admin: dict, client: Optional[dict] = None,
                  now: Optional[datetime] = None) -> dict:
    election = get_election(db, election_id)
    if election["status"] != RUNNING:
        raise PreconditionFailedError("Only RUNNING elections can be stopped")

    now = now or utcnow()
    election = db.elections.find_one_and_update(
        {"_id": election["_id"], "status": RUNNING},
        {"$set": {"status": ENDED, "ended_at": now, "updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    if not election:
        raise PreconditionFailedError("Only RUNNING elections can be stopped")

    logger.info("Election %s (%s) stopped by admin", election["name"], election["_id"])
    _audit(db, admin, "STOP_ELECTION", election["_id"], {"ended_at": now.isoformat()}, client)
    return election


def set_results_published(db: Database, election_id, published: bool, admin: dict,
                          client: Optional[dict] = None) -> dict:
    election = get_election(db, election_id)
    if election["status"] != ENDED:
        raise PreconditionFailedError("Can publish only after election ends")

    election = db.elections.find_one_and_update(
        {"_id": election["_id"]},
        {"$set": {"results_published": bool(published), "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    action = "PUBLISH_RESULTS" if published else "UNPUBLISH_RESULTS"
    _audit(db, admin, action, election["_id"], {"name": election["name"]}, client)
    return election


def is_expired(election: dict, now: datetime) -> bool:
    ends_at = election.get("ends_at")
    return election["status"] == RUNNING and ends_at is not None and ends_at <= now


def end_if_expired(db: Database, election: dict, now: Optional[datetime] = None) -> dict:
    """Move a RUNNING election past its deadline to ENDED; a no-op otherwise."""
    now = now or utcnow()
    if not is_expired(election, now):
        return election

    updated = db.elections.find_one_and_update(
        {"_id": election["_id"], "status": RUNNING},
        {"$set": {"status": ENDED, "ended_at": now, "updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        # Someone else ended it first
        return db.elections.find_one({"_id": election["_id"]}) or election

    logger.info("Election %s (%s) has been auto-closed", updated["name"], updated["_id"])
    return updated


def close_expired_elections(db: Database, now: Optional[datetime] = None) -> List[ObjectId]:
    """Body of the periodic sweep: end every auto-close election whose deadline passed."""
    now = now or utcnow()
    expired = list(db.elections.find({
        "status": RUNNING,
        "auto_close_enabled": True,
        "ends_at": {"$lte": now},
    }))
    if not expired:
        return []

    logger.info("Found %d elections to auto-close", len(expired))
    closed = []
    for election in expired:
        updated = end_if_expired(db, election, now)
        if updated["status"] == ENDED:
            closed.append(updated["_id"])
    return closed
