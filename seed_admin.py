"""Create the first SUPER_ADMIN account.

    python seed_admin.py --admin-id SA001 --email admin@college.edu \
        --mobile 9999999999 --password 'ChangeMe123' --name "Super Admin"
"""

import argparse
import logging
import sys

from pydantic import ValidationError

from accounts import create_admin
from config import LOG_LEVEL
from db import close_client, ensure_indexes, get_db
from errors import VotingError
from logging_config import setup_logging
from models import AdminCreate, AdminType

logger = logging.getLogger("seed_admin")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed the first SUPER_ADMIN account")
    parser.add_argument("--admin-id", required=True)
    parser.add_argument("--email", required=True)
    parser.add_argument("--mobile", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--name", default="Super Admin")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(LOG_LEVEL)

    try:
        data = AdminCreate(
            full_name=args.name,
            admin_id=args.admin_id,
            email=args.email,
            mobile=args.mobile,
            password=args.password,
            admin_type=AdminType.SUPER_ADMIN,
        )
    except ValidationError as e:
        logger.error("Invalid admin details: %s", e)
        return 2

    db = get_db()
    try:
        ensure_indexes(db)
        admin = create_admin(db, data)
    except VotingError as e:
        logger.error("Could not create super admin: %s", e.message)
        return 1
    finally:
        close_client()

    logger.info("Super admin %s created with id %s", admin["admin_id"], admin["_id"])
    return 0


if __name__ == "__main__":
    sys.exit(main())
