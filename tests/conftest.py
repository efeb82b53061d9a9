"""
College Voting - Test Configuration and Fixtures
"""
import itertools
import os
from datetime import timedelta

import mongomock
import pytest
from bson.objectid import ObjectId
from fastapi.testclient import TestClient

# Set testing environment
os.environ['SCHEDULER_ENABLED'] = 'false'
os.environ['SECRET_KEY'] = 'test-secret-key-for-testing-only'
os.environ['VOTER_AUTO_APPROVE'] = 'false'

from app import app
from auth import token_for_user
from db import ensure_indexes, get_db
from models import AdminType, ApprovalStatus, ElectionStatus, Role, Selection
from utils import hash_password, utcnow

TEST_PASSWORD = 'password123'
# bcrypt is slow; hash once for every factory-built user
TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)

_sequence = itertools.count(1)


@pytest.fixture
def db():
    """Fresh in-memory database with the production indexes"""
    database = mongomock.MongoClient()['college_voting_test']
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    """Create test client with database override"""
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build authentication headers for a stored user"""
    def _headers(user: dict) -> dict:
        return {'Authorization': f'Bearer {token_for_user(user)}'}
    return _headers


@pytest.fixture
def make_user(db):
    """Insert a user; defaults to a verified, approved, active voter"""
    def _make(role=Role.VOTER, verified=True, approval=ApprovalStatus.APPROVED, active=True,
              admin_type=AdminType.SUPER_ADMIN, **fields):
        n = next(_sequence)
        now = utcnow()
        user = {
            'full_name': f'Student {n}',
            'email': f'user{n}@college.edu',
            'mobile': f'9{n:09d}',
            'password_hash': TEST_PASSWORD_HASH,
            'role': role.value,
            'approval_status': approval.value,
            'is_email_verified': verified,
            'is_mobile_verified': verified,
            'is_active': active,
            'created_at': now,
            'updated_at': now,
        }
        if role == Role.ADMIN:
            user['admin_id'] = f'ADM{n:04d}'
            user['admin_type'] = admin_type.value
            user['full_name'] = f'Admin {n}'
        else:
            user['enrollment_id'] = f'EN{n:05d}'
            user['scholar_or_roll_number'] = f'R{n}'
            user['department'] = 'Computer Science'
            user['semester_or_year'] = '3'
        user.update(fields)
        user['_id'] = db.users.insert_one(user).inserted_id
        return user
    return _make


@pytest.fixture
def admin(make_user):
    return make_user(Role.ADMIN, admin_type=AdminType.SUPER_ADMIN)


@pytest.fixture
def make_election(db):
    """Insert an election; ``positions`` is a list of (title, max_winners) pairs"""
    def _make(status=ElectionStatus.RUNNING, positions=(('President', 1),), ends_in=timedelta(hours=1),
              auto_close_enabled=False, **fields):
        n = next(_sequence)
        now = utcnow()
        election = {
            'name': f'Election {n}',
            'description': None,
            'status': status.value,
            'starts_at': None,
            'ends_at': now + ends_in if ends_in is not None else None,
            'started_at': now if status in (ElectionStatus.RUNNING, ElectionStatus.ENDED) else None,
            'ended_at': now if status == ElectionStatus.ENDED else None,
            'auto_close_enabled': auto_close_enabled,
            'results_published': False,
            'positions': [
                {'_id': ObjectId(), 'title': title, 'order': index, 'max_winners': max_winners}
                for index, (title, max_winners) in enumerate(positions)
            ],
            'created_at': now,
            'updated_at': now,
        }
        election.update(fields)
        election['_id'] = db.elections.insert_one(election).inserted_id
        return election
    return _make


@pytest.fixture
def make_candidate(db, make_user):
    """Insert an approved candidate contesting ``position`` of ``election``"""
    def _make(election, position, **user_fields):
        user = make_user(Role.CANDIDATE, **user_fields)
        now = utcnow()
        profile = {
            'user_id': user['_id'],
            'election_id': election['_id'],
            'position_id': position['_id'],
            'photo_url': None,
            'election_symbol_url': None,
            'manifesto': None,
            'created_at': now,
            'updated_at': now,
        }
        db.candidate_profiles.insert_one(profile)
        return user
    return _make


@pytest.fixture
def selections():
    """Build a ballot from (position, candidate) pairs"""
    def _build(*pairs):
        return [
            Selection(position_id=str(position['_id']), candidate_user_id=str(candidate['_id']))
            for position, candidate in pairs
        ]
    return _build


@pytest.fixture
def end_election(db):
    def _end(election):
        db.elections.update_one(
            {'_id': election['_id']},
            {'$set': {'status': ElectionStatus.ENDED.value, 'ended_at': utcnow()}},
        )
    return _end
