import logging
from typing import Any, List, Optional

from pymongo import DESCENDING
from pymongo.database import Database

from utils import utcnow

logger = logging.getLogger(__name__)

MAX_LOG_PAGE = 200


def log_admin_action(
    db: Database,
    admin_user_id,
    action: str,
    entity_type: str,
    entity_id=None,
    meta: Optional[dict] = None,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Any:
    """Append an audit entry for an admin mutation."""
    result = db.admin_logs.insert_one({
        "admin_user_id": admin_user_id,
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "meta": meta or {},
        "ip": ip,
        "user_agent": user_agent,
        "created_at": utcnow(),
    })
    logger.info("Admin %s performed %s on %s %s", admin_user_id, action, entity_type, entity_id)
    return result.inserted_id


def list_admin_logs(db: Database, limit: int = 50) -> List[dict]:
    limit = max(1, min(int(limit), MAX_LOG_PAGE))
    logs = list(db.admin_logs.find().sort("created_at", DESCENDING).limit(limit))

    admin_ids = list({log["admin_user_id"] for log in logs if log.get("admin_user_id")})
    admins = {
        admin["_id"]: admin
        for admin in db.users.find({"_id": {"$in": admin_ids}}, {"full_name": 1, "admin_id": 1, "admin_type": 1})
    }
    for log in logs:
        admin = admins.get(log.get("admin_user_id"))
        log["admin"] = (
            {"full_name": admin.get("full_name"), "admin_id": admin.get("admin_id"), "admin_type": admin.get("admin_type")}
            if admin else None
        )
    return logs
