from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


MOBILE_PATTERN = r"^\+?[0-9]{8,20}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class Role(str, Enum):
    VOTER = "VOTER"
    CANDIDATE = "CANDIDATE"
    ADMIN = "ADMIN"


class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AdminType(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ELECTION_ADMIN = "ELECTION_ADMIN"
    VERIFICATION_ADMIN = "VERIFICATION_ADMIN"


class ElectionStatus(str, Enum):
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    RUNNING = "RUNNING"
    ENDED = "ENDED"


# Statuses in which positions and manifestos may still change
EDITABLE_STATUSES = (ElectionStatus.DRAFT.value, ElectionStatus.SCHEDULED.value)


class RequestModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


# User Models
class VoterRegister(RequestModel):
    full_name: str = Field(min_length=2, max_length=80)
    enrollment_id: str = Field(min_length=3, max_length=30)
    scholar_or_roll_number: str = Field(min_length=1, max_length=30)
    department: str = Field(min_length=2, max_length=80)
    semester_or_year: str = Field(min_length=1, max_length=20)
    mobile: str = Field(min_length=8, max_length=20, pattern=MOBILE_PATTERN)
    email: str = Field(max_length=254, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8, max_length=64)


class CandidateRegister(VoterRegister):
    election_id: str = Field(min_length=1)
    position_id: str = Field(min_length=1)
    photo_url: Optional[str] = None
    election_symbol_url: Optional[str] = None
    manifesto: Optional[str] = Field(default=None, max_length=4000)


class UserLogin(RequestModel):
    identifier: str = Field(min_length=3)
    password: str = Field(min_length=8, max_length=64)


class EmailOtpRequest(RequestModel):
    email: str = Field(pattern=EMAIL_PATTERN)


class EmailOtpVerify(EmailOtpRequest):
    otp: str = Field(min_length=4, max_length=10)


class MobileOtpRequest(RequestModel):
    mobile: str = Field(pattern=MOBILE_PATTERN)


class MobileOtpVerify(MobileOtpRequest):
    otp: str = Field(min_length=4, max_length=10)


class ForgotPassword(RequestModel):
    email: str = Field(pattern=EMAIL_PATTERN)


class ResetPassword(RequestModel):
    password: str = Field(min_length=8, max_length=64)


class AdminCreate(RequestModel):
    full_name: str = Field(min_length=2, max_length=80)
    admin_id: str = Field(min_length=3, max_length=30)
    email: str = Field(pattern=EMAIL_PATTERN)
    mobile: str = Field(pattern=MOBILE_PATTERN)
    password: str = Field(min_length=8, max_length=64)
    admin_type: AdminType


class ApprovalUpdate(RequestModel):
    status: ApprovalStatus
    note: Optional[str] = Field(default=None, max_length=500)


# Election and Position Models
class ElectionCreate(RequestModel):
    name: str = Field(min_length=3, max_length=120)
    description: Optional[str] = Field(default=None, max_length=1000)
    auto_close_enabled: bool = False
    ends_at: Optional[datetime] = None


class ElectionUpdate(RequestModel):
    name: Optional[str] = Field(default=None, min_length=3, max_length=120)
    description: Optional[str] = Field(default=None, max_length=1000)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    auto_close_enabled: Optional[bool] = None
    results_published: Optional[bool] = None
    status: Optional[ElectionStatus] = None


class PositionCreate(RequestModel):
    title: str = Field(min_length=2, max_length=80)
    max_winners: int = Field(default=1, ge=1, le=10)
    order: int = Field(default=0, ge=0, le=999)


class PositionUpdate(RequestModel):
    title: Optional[str] = Field(default=None, min_length=2, max_length=80)
    max_winners: Optional[int] = Field(default=None, ge=1, le=10)
    order: Optional[int] = Field(default=None, ge=0, le=999)


class PublishResults(BaseModel):
    published: bool = True


class CandidateProfileUpdate(RequestModel):
    photo_url: Optional[str] = None
    election_symbol_url: Optional[str] = None
    position_id: Optional[str] = None
    manifesto: Optional[str] = Field(default=None, max_length=4000)


# Voting Models
class Selection(RequestModel):
    position_id: str = Field(min_length=1)
    candidate_user_id: str = Field(min_length=1)


class Ballot(BaseModel):
    selections: List[Selection] = Field(min_length=1)


class VoteStatus(BaseModel):
    has_voted: bool
    voted_at: Optional[datetime] = None


# Results Models
class CandidateInfo(BaseModel):
    full_name: str
    enrollment_id: Optional[str] = None
    department: Optional[str] = None
    semester_or_year: Optional[str] = None


class CandidateAssets(BaseModel):
    photo_url: Optional[str] = None
    election_symbol_url: Optional[str] = None
    manifesto: Optional[str] = None


class CandidateResult(BaseModel):
    candidate_user_id: str
    votes: int
    percentage: float
    user: CandidateInfo
    profile: Optional[CandidateAssets] = None


class PositionResult(BaseModel):
    position_id: str
    title: str
    max_winners: int
    total_votes: int
    candidates: List[CandidateResult]
    winners: List[CandidateResult]


class ResultsSummary(BaseModel):
    total_eligible_voters: int
    total_votes_cast: int
    turnout_pct: float


class ElectionSummary(BaseModel):
    id: str
    name: str
    status: ElectionStatus
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    results_published: bool = False


class ElectionResults(BaseModel):
    election: ElectionSummary
    summary: ResultsSummary
    positions: List[PositionResult]
