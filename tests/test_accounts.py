from datetime import timedelta

import pytest
from bson.objectid import ObjectId

import accounts
from auth import decode_access_token
from errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PreconditionFailedError,
    RateLimitedError,
    ValidationFailedError,
)
from models import (
    AdminCreate,
    AdminType,
    ApprovalStatus,
    ApprovalUpdate,
    CandidateRegister,
    ElectionStatus,
    Role,
    VoterRegister,
)
from utils import utcnow


@pytest.fixture
def outbox(monkeypatch):
    """Capture OTP codes and reset links instead of delivering them"""
    sent = {'email': [], 'mobile': [], 'reset': []}
    monkeypatch.setattr(accounts, 'send_email_otp', lambda to, code: sent['email'].append((to, code)) or True)
    monkeypatch.setattr(accounts, 'send_mobile_otp', lambda to, code: sent['mobile'].append((to, code)) or True)
    monkeypatch.setattr(accounts, 'send_password_reset', lambda to, link: sent['reset'].append((to, link)) or True)
    return sent


def voter_data(**overrides):
    data = {
        'full_name': 'Riya Sharma',
        'enrollment_id': 'EN2024001',
        'scholar_or_roll_number': '21CS001',
        'department': 'Computer Science',
        'semester_or_year': '5',
        'mobile': '9876543210',
        'email': 'Riya@College.edu',
        'password': 'secret-pass',
    }
    data.update(overrides)
    return data


class TestRegistration:

    def test_voter_registers_pending_with_hashed_otps(self, db, outbox):
        user = accounts.register_voter(db, VoterRegister(**voter_data()))

        stored = db.users.find_one({'_id': user['_id']})
        assert stored['role'] == 'VOTER'
        assert stored['approval_status'] == 'PENDING'
        assert stored['email'] == 'riya@college.edu'
        assert stored['password_hash'] != 'secret-pass'
        assert stored['is_email_verified'] is False
        assert outbox['email'][0][0] == 'riya@college.edu'
        assert stored['email_otp']['code_hash'] != outbox['email'][0][1]
        assert 'admin_id' not in stored

    def test_voter_auto_approve(self, db, outbox, monkeypatch):
        monkeypatch.setattr(accounts, 'VOTER_AUTO_APPROVE', True)

        user = accounts.register_voter(db, VoterRegister(**voter_data()))

        assert user['approval_status'] == 'APPROVED'

    @pytest.mark.parametrize('overrides', [
        {'enrollment_id': 'EN2024999', 'mobile': '9000000001'},
        {'email': 'other@college.edu', 'enrollment_id': 'EN2024999'},
        {'email': 'other@college.edu', 'mobile': '9000000001'},
    ])
    def test_duplicate_identity_conflicts(self, db, outbox, overrides):
        accounts.register_voter(db, VoterRegister(**voter_data()))

        with pytest.raises(ConflictError):
            accounts.register_voter(db, VoterRegister(**voter_data(**overrides)))
        assert db.users.count_documents({}) == 1

    def test_candidate_registration_creates_user_and_profile(self, db, outbox, make_election):
        election = make_election(status=ElectionStatus.DRAFT)
        position = election['positions'][0]
        data = CandidateRegister(**voter_data(), election_id=str(election['_id']),
                                 position_id=str(position['_id']), manifesto='Better canteens')

        user, profile = accounts.register_candidate(db, data)

        assert user['role'] == 'CANDIDATE'
        assert user['approval_status'] == 'PENDING'
        stored = db.candidate_profiles.find_one({'_id': profile['_id']})
        assert stored['user_id'] == user['_id']
        assert stored['position_id'] == position['_id']
        assert stored['manifesto'] == 'Better canteens'

    def test_candidate_needs_a_position_of_the_election(self, db, outbox, make_election):
        election = make_election(status=ElectionStatus.DRAFT)
        data = CandidateRegister(**voter_data(), election_id=str(election['_id']), position_id=str(ObjectId()))

        with pytest.raises(ValidationFailedError):
            accounts.register_candidate(db, data)
        assert db.users.count_documents({}) == 0

    def test_failed_profile_write_leaves_no_user(self, db, outbox, make_election, monkeypatch):
        election = make_election(status=ElectionStatus.DRAFT)
        position = election['positions'][0]
        collection_class = type(db.candidate_profiles)
        original_insert = collection_class.insert_one

        def failing_insert(self, document, *args, **kwargs):
            if self.name == 'candidate_profiles':
                raise RuntimeError('datastore unavailable')
            return original_insert(self, document, *args, **kwargs)

        monkeypatch.setattr(collection_class, 'insert_one', failing_insert)
        data = CandidateRegister(**voter_data(), election_id=str(election['_id']), position_id=str(position['_id']))

        with pytest.raises(RuntimeError):
            accounts.register_candidate(db, data)

        assert db.users.count_documents({}) == 0
        assert outbox['email'] == []


class TestLogin:

    def test_login_by_email_and_enrollment_id(self, db, make_user):
        voter = make_user(email='asha@college.edu', enrollment_id='EN777')

        token, user = accounts.login(db, 'ASHA@college.edu', 'password123')
        assert decode_access_token(token)['sub'] == str(voter['_id'])
        assert user['last_login_at'] is not None

        _, user = accounts.login(db, 'EN777', 'password123')
        assert user['_id'] == voter['_id']

    def test_admin_logs_in_by_admin_id(self, db, admin):
        token, _ = accounts.login(db, admin['admin_id'], 'password123')

        payload = decode_access_token(token)
        assert payload['role'] == 'ADMIN'
        assert payload['admin_type'] == 'SUPER_ADMIN'

    def test_wrong_password_and_unknown_user(self, db, make_user):
        voter = make_user()

        with pytest.raises(AuthenticationError):
            accounts.login(db, voter['email'], 'wrong-password')
        with pytest.raises(AuthenticationError):
            accounts.login(db, 'nobody@college.edu', 'password123')

    def test_disabled_account_is_forbidden(self, db, make_user):
        voter = make_user(active=False)

        with pytest.raises(ForbiddenError):
            accounts.login(db, voter['email'], 'password123')

    @pytest.mark.parametrize('overrides', [{'verified': False}, {'approval': ApprovalStatus.PENDING}])
    def test_candidates_must_be_verified_and_approved(self, db, make_user, overrides):
        candidate = make_user(Role.CANDIDATE, **overrides)

        with pytest.raises(ForbiddenError):
            accounts.login(db, candidate['email'], 'password123')


class TestOtp:

    def test_verify_email_otp(self, db, outbox):
        accounts.register_voter(db, VoterRegister(**voter_data()))
        _, code = outbox['email'][0]

        accounts.verify_otp(db, 'email', 'riya@college.edu', code)

        stored = db.users.find_one({'email': 'riya@college.edu'})
        assert stored['is_email_verified'] is True
        assert stored['email_otp']['verified_at'] is not None
        with pytest.raises(ValidationFailedError):
            accounts.verify_otp(db, 'email', 'riya@college.edu', code)

    def test_wrong_code_counts_an_attempt(self, db, outbox):
        accounts.register_voter(db, VoterRegister(**voter_data()))
        _, code = outbox['mobile'][0]
        wrong = '000000' if code != '000000' else '111111'

        with pytest.raises(ValidationFailedError):
            accounts.verify_otp(db, 'mobile', '9876543210', wrong)

        stored = db.users.find_one({'mobile': '9876543210'})
        assert stored['mobile_otp']['attempts'] == 1
        assert stored['is_mobile_verified'] is False

    def test_expired_code_is_rejected(self, db, outbox):
        accounts.register_voter(db, VoterRegister(**voter_data()))
        _, code = outbox['email'][0]

        with pytest.raises(ValidationFailedError):
            accounts.verify_otp(db, 'email', 'riya@college.edu', code, now=utcnow() + timedelta(minutes=30))

    def test_resend_respects_cooldown(self, db, outbox):
        accounts.register_voter(db, VoterRegister(**voter_data()))

        with pytest.raises(RateLimitedError) as exc:
            accounts.resend_otp(db, 'email', 'riya@college.edu')
        assert exc.value.details['retry_after_seconds'] > 0

        later = utcnow() + timedelta(seconds=61)
        accounts.resend_otp(db, 'email', 'riya@college.edu', now=later)
        _, code = outbox['email'][-1]
        accounts.verify_otp(db, 'email', 'riya@college.edu', code, now=later)

        assert db.users.find_one({'email': 'riya@college.edu'})['is_email_verified'] is True

    def test_unknown_address_is_not_found(self, db):
        with pytest.raises(NotFoundError):
            accounts.resend_otp(db, 'mobile', '9111111111')


class TestPasswordReset:

    def test_reset_with_emailed_token(self, db, make_user, outbox):
        voter = make_user()
        accounts.forgot_password(db, voter['email'])
        _, link = outbox['reset'][0]
        token = link.rsplit('/', 1)[1]

        stored = db.users.find_one({'_id': voter['_id']})
        assert stored['reset_password_token'] != token

        accounts.reset_password(db, token, 'brand-new-pass')

        _, user = accounts.login(db, voter['email'], 'brand-new-pass')
        assert 'reset_password_token' not in user
        with pytest.raises(ValidationFailedError):
            accounts.reset_password(db, token, 'another-pass')

    def test_expired_token_is_rejected(self, db, make_user, outbox):
        voter = make_user()
        accounts.forgot_password(db, voter['email'])
        token = outbox['reset'][0][1].rsplit('/', 1)[1]
        db.users.update_one({'_id': voter['_id']}, {'$set': {'reset_password_expires': utcnow() - timedelta(minutes=1)}})

        with pytest.raises(ValidationFailedError):
            accounts.reset_password(db, token, 'brand-new-pass')

    def test_unknown_email_is_not_found(self, db, outbox):
        with pytest.raises(NotFoundError):
            accounts.forgot_password(db, 'ghost@college.edu')


class TestApprovals:

    def test_approve_voter_records_reviewer(self, db, admin, make_user):
        voter = make_user(approval=ApprovalStatus.PENDING)
        assert [u['_id'] for u in accounts.list_voters(db)] == [voter['_id']]

        user = accounts.set_user_approval(
            db, str(voter['_id']), ApprovalUpdate(status=ApprovalStatus.APPROVED, note='ID checked'), admin
        )

        assert user['approval_status'] == 'APPROVED'
        stored = db.users.find_one({'_id': voter['_id']})
        assert stored['approved_by'] == admin['_id']
        assert stored['approval_note'] == 'ID checked'
        assert db.admin_logs.find_one({'action': 'APPROVE_USER'})['entity_id'] == voter['_id']
        assert accounts.list_voters(db) == []

    def test_reject_candidate(self, db, admin, make_user):
        candidate = make_user(Role.CANDIDATE, approval=ApprovalStatus.PENDING)

        accounts.set_user_approval(db, candidate['_id'], ApprovalUpdate(status=ApprovalStatus.REJECTED), admin)

        assert db.users.find_one({'_id': candidate['_id']})['approval_status'] == 'REJECTED'
        assert db.admin_logs.find_one({'action': 'REJECT_USER'}) is not None

    def test_pending_is_not_a_decision(self, db, admin, make_user):
        voter = make_user(approval=ApprovalStatus.PENDING)

        with pytest.raises(ValidationFailedError):
            accounts.set_user_approval(db, voter['_id'], ApprovalUpdate(status=ApprovalStatus.PENDING), admin)

    def test_admins_need_no_approval(self, db, admin, make_user):
        other = make_user(Role.ADMIN, admin_type=AdminType.ELECTION_ADMIN)

        with pytest.raises(PreconditionFailedError):
            accounts.set_user_approval(db, other['_id'], ApprovalUpdate(status=ApprovalStatus.APPROVED), admin)

    def test_unknown_user_is_not_found(self, db, admin):
        with pytest.raises(NotFoundError):
            accounts.set_user_approval(db, 'not-an-id', ApprovalUpdate(status=ApprovalStatus.APPROVED), admin)

    def test_pending_candidates_list_their_contest(self, db, make_election, make_candidate):
        election = make_election(status=ElectionStatus.DRAFT, name='Senate')
        candidate = make_candidate(election, election['positions'][0], approval=ApprovalStatus.PENDING)

        rows = accounts.list_candidates(db)

        assert len(rows) == 1
        assert rows[0]['user']['_id'] == candidate['_id']
        assert rows[0]['election']['name'] == 'Senate'
        assert rows[0]['position']['title'] == 'President'


class TestAdmins:

    def admin_data(self, **overrides):
        data = {
            'full_name': 'Election Officer',
            'admin_id': 'EA001',
            'email': 'officer@college.edu',
            'mobile': '9123456780',
            'password': 'officer-pass',
            'admin_type': AdminType.ELECTION_ADMIN,
        }
        data.update(overrides)
        return AdminCreate(**data)

    def test_super_admin_creates_admin(self, db, admin):
        created = accounts.create_admin(db, self.admin_data(), admin, {'ip': '10.1.1.1'})

        assert created['role'] == 'ADMIN'
        assert created['approval_status'] == 'APPROVED'
        assert 'enrollment_id' not in created
        log = db.admin_logs.find_one({'action': 'CREATE_ADMIN'})
        assert log['admin_user_id'] == admin['_id']
        assert log['ip'] == '10.1.1.1'
        assert created['_id'] in [a['_id'] for a in accounts.list_admins(db)]

    def test_duplicate_admin_id_conflicts(self, db, admin):
        accounts.create_admin(db, self.admin_data(), admin)

        with pytest.raises(ConflictError):
            accounts.create_admin(
                db, self.admin_data(email='second@college.edu', mobile='9123456781'), admin
            )
