import logging

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import MONGO_DB_NAME, MONGO_URI

logger = logging.getLogger(__name__)

_client = None


def get_client() -> MongoClient:
    global _client
    if _client is None:
        _client = MongoClient(MONGO_URI, serverSelectionTimeoutMS=5000)
    return _client


def get_db() -> Database:
    """FastAPI dependency; tests override it with an in-memory database."""
    return get_client()[MONGO_DB_NAME]


def ensure_indexes(db: Database) -> None:
    """Create the uniqueness constraints the voting core relies on."""
    db.users.create_index("email", unique=True)
    db.users.create_index("mobile", unique=True)
    # Admins have no enrollment_id and students have no admin_id
    db.users.create_index("enrollment_id", unique=True, sparse=True)
    db.users.create_index("admin_id", unique=True, sparse=True)
    db.users.create_index([("role", ASCENDING), ("approval_status", ASCENDING)])

    db.elections.create_index("name", unique=True)
    db.elections.create_index([("status", ASCENDING), ("ends_at", ASCENDING)])

    db.candidate_profiles.create_index([("user_id", ASCENDING), ("election_id", ASCENDING)], unique=True)
    db.candidate_profiles.create_index([("election_id", ASCENDING), ("position_id", ASCENDING)])

    # One ballot per voter per election, and per enrollment id as a backstop
    db.votes.create_index([("election_id", ASCENDING), ("voter_user_id", ASCENDING)], unique=True)
    db.votes.create_index([("election_id", ASCENDING), ("enrollment_id", ASCENDING)], unique=True)

    db.admin_logs.create_index([("created_at", DESCENDING)])
    logger.info("Datastore indexes ensured on %s", db.name)


def close_client() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None
