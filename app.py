import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, File, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import OAuth2PasswordRequestForm
from pymongo.database import Database

import accounts
import ballots
import candidates
import elections
import results
from audit import list_admin_logs
from auth import (
    get_current_user,
    require_admin_type,
    require_eligible,
    require_super_admin,
)
from cloudinary_utils import (
    CANDIDATE_PHOTO_FOLDER,
    CANDIDATE_SYMBOL_FOLDER,
    upload_image_to_cloudinary,
    validate_image,
)
from config import CORS_ORIGINS, LOG_LEVEL, SCHEDULER_ENABLED
from db import close_client, ensure_indexes, get_db
from errors import ValidationFailedError, VotingError
from exporters import PDF_MEDIA_TYPE, XLSX_MEDIA_TYPE, results_to_pdf, results_to_xlsx
from logging_config import setup_logging
from models import (
    AdminCreate,
    AdminType,
    ApprovalStatus,
    ApprovalUpdate,
    Ballot,
    CandidateProfileUpdate,
    CandidateRegister,
    ElectionCreate,
    ElectionUpdate,
    EmailOtpRequest,
    EmailOtpVerify,
    ForgotPassword,
    MobileOtpRequest,
    MobileOtpVerify,
    PositionCreate,
    PositionUpdate,
    PublishResults,
    ResetPassword,
    Role,
    UserLogin,
    VoterRegister,
)
from scheduler import start_scheduler
from utils import public_user, serialize_document

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(LOG_LEVEL)
    db = get_db()
    ensure_indexes(db)
    scheduler = start_scheduler(db) if SCHEDULER_ENABLED else None
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        close_client()


app = FastAPI(
    title="College Voting",
    description="College election API: registration, approvals, single-ballot voting and results.",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(VotingError)
async def voting_error_handler(request: Request, exc: VotingError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"success": False, **exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return await voting_error_handler(
        request, ValidationFailedError("Validation failed", details={"errors": jsonable_encoder(exc.errors())})
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "code": "INTERNAL_ERROR",
                                                  "message": "Internal Server Error", "details": {}})


router = APIRouter(prefix="/api/v1")

election_admin = require_admin_type(AdminType.ELECTION_ADMIN)
verification_admin = require_admin_type(AdminType.VERIFICATION_ADMIN)
eligible_voter = require_eligible(Role.VOTER)
eligible_candidate = require_eligible(Role.CANDIDATE)


def client_info(request: Request) -> dict:
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


def ok(message: Optional[str] = None, data=None) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = serialize_document(data)
    return body


@router.get("/health")
def health():
    return ok("API is healthy")


# ===================== AUTH =====================

@router.post("/token")
def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends(), db: Database = Depends(get_db)):
    token, _ = accounts.login(db, form_data.username, form_data.password)
    return {"access_token": token, "token_type": "bearer"}


@router.post("/auth/register/voter", status_code=201)
def register_voter(body: VoterRegister, db: Database = Depends(get_db)):
    user = accounts.register_voter(db, body)
    return ok(
        "Voter registered. Please verify Email & Mobile OTP. Await admin approval after verification.",
        {"user_id": user["_id"], "approval_status": user["approval_status"]},
    )


@router.post("/auth/register/candidate", status_code=201)
def register_candidate(body: CandidateRegister, db: Database = Depends(get_db)):
    user, profile = accounts.register_candidate(db, body)
    return ok(
        "Candidate registered. Please verify Email & Mobile OTP. Await admin approval.",
        {"user_id": user["_id"], "profile_id": profile["_id"]},
    )


@router.post("/auth/login")
def login(body: UserLogin, db: Database = Depends(get_db)):
    token, user = accounts.login(db, body.identifier, body.password)
    return ok("Login successful", {"token": token, "user": public_user(user)})


@router.get("/auth/me")
def me(user: dict = Depends(get_current_user)):
    return ok(data=public_user(user))


@router.post("/auth/otp/email/send")
def send_email_otp(body: EmailOtpRequest, db: Database = Depends(get_db)):
    accounts.resend_otp(db, "email", body.email)
    return ok("Email OTP sent")


@router.post("/auth/otp/email/verify")
def verify_email_otp(body: EmailOtpVerify, db: Database = Depends(get_db)):
    accounts.verify_otp(db, "email", body.email, body.otp)
    return ok("Email verified successfully")


@router.post("/auth/otp/mobile/send")
def send_mobile_otp(body: MobileOtpRequest, db: Database = Depends(get_db)):
    accounts.resend_otp(db, "mobile", body.mobile)
    return ok("Mobile OTP sent")


@router.post("/auth/otp/mobile/verify")
def verify_mobile_otp(body: MobileOtpVerify, db: Database = Depends(get_db)):
    accounts.verify_otp(db, "mobile", body.mobile, body.otp)
    return ok("Mobile verified successfully")


@router.post("/auth/forgot-password")
def forgot_password(body: ForgotPassword, db: Database = Depends(get_db)):
    accounts.forgot_password(db, body.email)
    return ok("Password reset link sent to email")


@router.post("/auth/reset-password/{token}")
def reset_password(token: str, body: ResetPassword, db: Database = Depends(get_db)):
    accounts.reset_password(db, token, body.password)
    return ok("Password reset successful")


# ===================== PUBLIC ELECTIONS =====================

@router.get("/elections")
def list_public_elections(db: Database = Depends(get_db)):
    return ok(data=elections.list_elections(db))


@router.get("/elections/{election_id}")
def get_public_election(election_id: str, db: Database = Depends(get_db)):
    return ok(data=elections.get_election(db, election_id))


@router.get("/elections/{election_id}/candidates")
def list_election_candidates(election_id: str, position_id: Optional[str] = None, db: Database = Depends(get_db)):
    return ok(data=candidates.list_approved_candidates(db, election_id, position_id))


# ===================== VOTING =====================

@router.get("/votes/{election_id}/my-status")
def my_vote_status(election_id: str, voter: dict = Depends(eligible_voter), db: Database = Depends(get_db)):
    return ok(data=ballots.get_status(db, election_id, voter).model_dump())


@router.post("/votes/{election_id}/cast", status_code=201)
def cast_vote(election_id: str, body: Ballot, request: Request,
              voter: dict = Depends(eligible_voter), db: Database = Depends(get_db)):
    vote = ballots.admit(db, election_id, voter, body.selections, **client_info(request))
    return ok("Vote cast successfully", {"vote_id": vote["_id"], "election_id": vote["election_id"]})


# ===================== CANDIDATE =====================

@router.get("/candidate/elections/{election_id}/profile")
def get_my_candidate_profile(election_id: str, user: dict = Depends(eligible_candidate),
                             db: Database = Depends(get_db)):
    return ok(data=candidates.get_my_profile(db, election_id, user))


@router.patch("/candidate/elections/{election_id}/profile")
def update_my_candidate_profile(election_id: str, body: CandidateProfileUpdate,
                                user: dict = Depends(eligible_candidate), db: Database = Depends(get_db)):
    profile = candidates.update_my_profile(db, election_id, user, body)
    return ok("Candidate profile updated", profile)


@router.get("/candidate/elections/{election_id}/results")
def candidate_get_results(election_id: str, user: dict = Depends(eligible_candidate),
                          db: Database = Depends(get_db)):
    return ok(data=results.candidate_results(db, election_id, user).model_dump())


def _upload_candidate_asset(file: UploadFile, folder: str) -> dict:
    content = file.file.read()
    validate_image(file.content_type, len(content))
    return ok("Upload successful", {"url": upload_image_to_cloudinary(content, folder)})


@router.post("/upload/candidate/photo")
def upload_candidate_photo(file: UploadFile = File(...), user: dict = Depends(eligible_candidate)):
    return _upload_candidate_asset(file, CANDIDATE_PHOTO_FOLDER)


@router.post("/upload/candidate/symbol")
def upload_candidate_symbol(file: UploadFile = File(...), user: dict = Depends(eligible_candidate)):
    return _upload_candidate_asset(file, CANDIDATE_SYMBOL_FOLDER)


# ===================== ADMIN: APPROVALS =====================

@router.get("/admin/approvals/voters")
def list_voters(status: ApprovalStatus = ApprovalStatus.PENDING, admin: dict = Depends(verification_admin),
                db: Database = Depends(get_db)):
    return ok(data=[public_user(u) for u in accounts.list_voters(db, status)])


@router.get("/admin/approvals/candidates")
def list_candidates(status: ApprovalStatus = ApprovalStatus.PENDING, admin: dict = Depends(verification_admin),
                    db: Database = Depends(get_db)):
    return ok(data=accounts.list_candidates(db, status))


@router.patch("/admin/approvals/users/{user_id}")
def set_user_approval(user_id: str, body: ApprovalUpdate, request: Request,
                      admin: dict = Depends(verification_admin), db: Database = Depends(get_db)):
    user = accounts.set_user_approval(db, user_id, body, admin, client_info(request))
    return ok(f"User {user['approval_status'].lower()}", {"id": user["_id"], "approval_status": user["approval_status"]})


# ===================== ADMIN: ELECTIONS =====================

@router.get("/admin/elections")
def admin_list_elections(admin: dict = Depends(election_admin), db: Database = Depends(get_db)):
    return ok(data=elections.list_elections(db))


@router.get("/admin/elections/{election_id}")
def admin_get_election(election_id: str, admin: dict = Depends(election_admin), db: Database = Depends(get_db)):
    return ok(data=elections.get_election(db, election_id))


@router.post("/admin/elections", status_code=201)
def create_election(body: ElectionCreate, request: Request, admin: dict = Depends(election_admin),
                    db: Database = Depends(get_db)):
    return ok("Election created (DRAFT)", elections.create_election(db, body, admin, client_info(request)))


@router.patch("/admin/elections/{election_id}")
def update_election(election_id: str, body: ElectionUpdate, request: Request,
                    admin: dict = Depends(election_admin), db: Database = Depends(get_db)):
    return ok("Election updated", elections.update_election(db, election_id, body, admin, client_info(request)))


@router.post("/admin/elections/{election_id}/positions", status_code=201)
def add_position(election_id: str, body: PositionCreate, request: Request,
                 admin: dict = Depends(election_admin), db: Database = Depends(get_db)):
    return ok("Position added", elections.add_position(db, election_id, body, admin, client_info(request)))


@router.patch("/admin/elections/{election_id}/positions/{position_id}")
def update_position(election_id: str, position_id: str, body: PositionUpdate, request: Request,
                    admin: dict = Depends(election_admin), db: Database = Depends(get_db)):
    position = elections.update_position(db, election_id, position_id, body, admin, client_info(request))
    return ok("Position updated", position)


@router.delete("/admin/elections/{election_id}/positions/{position_id}")
def delete_position(election_id: str, position_id: str, request: Request,
                    admin: dict = Depends(election_admin), db: Database = Depends(get_db)):
    elections.delete_position(db, election_id, position_id, admin, client_info(request))
    return ok("Position deleted")


@router.post("/admin/elections/{election_id}/start")
def start_election(election_id: str, request: Request, admin: dict = Depends(election_admin),
                   db: Database = Depends(get_db)):
    return ok("Election started", elections.start_election(db, election_id, admin, client_info(request)))


@router.post("/admin/elections/{election_id}/stop")
def stop_election(election_id: str, request: Request, admin: dict = Depends(election_admin),
                  db: Database = Depends(get_db)):
    return ok("Election ended", elections.stop_election(db, election_id, admin, client_info(request)))


# ===================== ADMIN: RESULTS =====================

@router.get("/admin/elections/{election_id}/results")
def admin_get_results(election_id: str, admin: dict = Depends(election_admin), db: Database = Depends(get_db)):
    return ok(data=results.tabulate(db, election_id).model_dump())


@router.get("/admin/elections/{election_id}/analytics")
def admin_get_analytics(election_id: str, admin: dict = Depends(election_admin), db: Database = Depends(get_db)):
    analytics = results.build_analytics(results.tabulate(db, election_id))
    return ok(data={
        "summary": analytics["summary"].model_dump(),
        "election": analytics["election"].model_dump(),
        "chart": analytics["chart"],
    })


@router.post("/admin/elections/{election_id}/publish-results")
def admin_publish_results(election_id: str, request: Request, body: Optional[PublishResults] = None,
                          admin: dict = Depends(election_admin), db: Database = Depends(get_db)):
    published = body.published if body is not None else True
    elections.set_results_published(db, election_id, published, admin, client_info(request))
    return ok("Results published" if published else "Results unpublished")


@router.get("/admin/elections/{election_id}/export/pdf")
def admin_export_results_pdf(election_id: str, admin: dict = Depends(election_admin),
                             db: Database = Depends(get_db)):
    tabulated = results.tabulate(db, election_id)
    return Response(
        content=results_to_pdf(tabulated),
        media_type=PDF_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename=results-{tabulated.election.id}.pdf"},
    )


@router.get("/admin/elections/{election_id}/export/excel")
def admin_export_results_excel(election_id: str, admin: dict = Depends(election_admin),
                               db: Database = Depends(get_db)):
    tabulated = results.tabulate(db, election_id)
    return Response(
        content=results_to_xlsx(tabulated),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename=results-{tabulated.election.id}.xlsx"},
    )


# ===================== SUPER ADMIN =====================

@router.post("/super-admin/admins", status_code=201)
def create_admin(body: AdminCreate, request: Request, creator: dict = Depends(require_super_admin),
                 db: Database = Depends(get_db)):
    admin = accounts.create_admin(db, body, creator, client_info(request))
    return ok("Admin created", public_user(admin))


@router.get("/super-admin/admins")
def list_admins(creator: dict = Depends(require_super_admin), db: Database = Depends(get_db)):
    return ok(data=[public_user(a) for a in accounts.list_admins(db)])


@router.get("/super-admin/logs")
def list_logs(limit: int = 50, creator: dict = Depends(require_super_admin), db: Database = Depends(get_db)):
    return ok(data=list_admin_logs(db, limit))


app.include_router(router)
