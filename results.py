"""
Results tabulation for ended elections.

Ballots are flattened into (position, candidate) pairs and counted per
position. Candidates are ranked by votes descending, with ties broken by
candidate id ascending so repeated runs give identical output. The first
``max_winners`` candidates of each position win.
"""

import logging
from collections import Counter, defaultdict
from typing import Dict, Iterable, List, Mapping

from pymongo.database import Database

from elections import ENDED, get_election
from errors import ForbiddenError, PreconditionFailedError
from models import (
    ApprovalStatus,
    CandidateAssets,
    CandidateInfo,
    CandidateResult,
    ElectionResults,
    ElectionSummary,
    PositionResult,
    ResultsSummary,
    Role,
)

logger = logging.getLogger(__name__)


def percentage(part: int, whole: int) -> float:
    if whole == 0:
        return 0.0
    return round(part / whole * 100, 2)


def count_selections(ballots: Iterable[Mapping]) -> Dict[str, Counter]:
    """Map position id -> Counter of candidate id -> votes."""
    counts: Dict[str, Counter] = defaultdict(Counter)
    for ballot in ballots:
        for selection in ballot.get("selections") or []:
            counts[str(selection["position_id"])][str(selection["candidate_user_id"])] += 1
    return counts


def rank_position(counts: Counter) -> List[tuple]:
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))


def _eligible_voter_count(db: Database) -> int:
    # Live count at tabulation time, not a snapshot taken when voting opened
    return db.users.count_documents({
        "role": Role.VOTER.value,
        "approval_status": ApprovalStatus.APPROVED.value,
        "is_active": True,
        "is_email_verified": True,
        "is_mobile_verified": True,
    })


def tabulate(db: Database, election_id) -> ElectionResults:
    election = get_election(db, election_id)
    if election["status"] != ENDED:
        raise PreconditionFailedError(
            "Election results are available only after the election ends.",
            details={"status": election["status"]},
        )

    eid = election["_id"]
    total_votes_cast = db.votes.count_documents({"election_id": eid})
    total_eligible_voters = _eligible_voter_count(db)

    counts = count_selections(db.votes.find({"election_id": eid}, {"selections": 1}))

    profiles = {
        (str(p["user_id"]), str(p["position_id"])): p
        for p in db.candidate_profiles.find({"election_id": eid})
    }
    users = {
        str(u["_id"]): u
        for u in db.users.find(
            {
                "_id": {"$in": list({p["user_id"] for p in profiles.values()})},
                "role": Role.CANDIDATE.value,
                "approval_status": ApprovalStatus.APPROVED.value,
                "is_active": True,
            },
            {"full_name": 1, "enrollment_id": 1, "department": 1, "semester_or_year": 1},
        )
    }

    indexed = list(enumerate(election.get("positions") or []))
    ordered = [p for _, p in sorted(indexed, key=lambda pair: (pair[1].get("order", 0), pair[0]))]

    positions = []
    for position in ordered:
        position_id = str(position["_id"])
        position_counts = counts.get(position_id, Counter())
        position_votes = sum(position_counts.values())
        max_winners = position.get("max_winners") or 1

        candidates = []
        for candidate_id, votes in rank_position(position_counts):
            user = users.get(candidate_id)
            # De-approved or deactivated candidates drop out of the report
            if not user:
                continue
            profile = profiles.get((candidate_id, position_id))
            candidates.append(CandidateResult(
                candidate_user_id=candidate_id,
                votes=votes,
                percentage=percentage(votes, position_votes),
                user=CandidateInfo(
                    full_name=user.get("full_name", ""),
                    enrollment_id=user.get("enrollment_id"),
                    department=user.get("department"),
                    semester_or_year=user.get("semester_or_year"),
                ),
                profile=CandidateAssets(
                    photo_url=profile.get("photo_url"),
                    election_symbol_url=profile.get("election_symbol_url"),
                    manifesto=profile.get("manifesto"),
                ) if profile else None,
            ))

        positions.append(PositionResult(
            position_id=position_id,
            title=position["title"],
            max_winners=max_winners,
            total_votes=position_votes,
            candidates=candidates,
            winners=candidates[:max_winners],
        ))

    logger.info("Tabulated election %s: %d ballots across %d positions", eid, total_votes_cast, len(positions))

    return ElectionResults(
        election=ElectionSummary(
            id=str(eid),
            name=election["name"],
            status=election["status"],
            started_at=election.get("started_at"),
            ended_at=election.get("ended_at"),
            ends_at=election.get("ends_at"),
            results_published=bool(election.get("results_published")),
        ),
        summary=ResultsSummary(
            total_eligible_voters=total_eligible_voters,
            total_votes_cast=total_votes_cast,
            turnout_pct=percentage(total_votes_cast, total_eligible_voters),
        ),
        positions=positions,
    )


def candidate_results(db: Database, election_id, user: dict) -> ElectionResults:
    """Results as seen by a candidate: published, and only for their own election."""
    if user.get("role") != Role.CANDIDATE.value:
        raise ForbiddenError("Only candidates can view results")

    election = get_election(db, election_id)
    if election["status"] != ENDED:
        raise ForbiddenError("Results are not available yet")
    if not election.get("results_published"):
        raise ForbiddenError("Results are not published yet")

    profile = db.candidate_profiles.find_one({"election_id": election["_id"], "user_id": user["_id"]})
    if not profile:
        raise ForbiddenError()

    return tabulate(db, election["_id"])


def build_analytics(results: ElectionResults) -> dict:
    chart = [
        {
            "position_id": position.position_id,
            "title": position.title,
            "total_votes": position.total_votes,
            "series": [
                {
                    "candidate_user_id": candidate.candidate_user_id,
                    "name": candidate.user.full_name,
                    "votes": candidate.votes,
                    "percentage": candidate.percentage,
                }
                for candidate in position.candidates
            ],
        }
        for position in results.positions
    ]
    return {"summary": results.summary, "election": results.election, "chart": chart}


def winner_ids(position: PositionResult) -> List[str]:
    return [winner.candidate_user_id for winner in position.winners]