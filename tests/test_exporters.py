import io

import pytest
from openpyxl import load_workbook

from exporters import results_to_pdf, results_to_xlsx
from models import (
    CandidateInfo,
    CandidateResult,
    ElectionResults,
    ElectionSummary,
    PositionResult,
    ResultsSummary,
)


@pytest.fixture
def results():
    asha = CandidateResult(candidate_user_id='a1', votes=6, percentage=60.0, user=CandidateInfo(full_name='Asha'))
    ravi = CandidateResult(candidate_user_id='b2', votes=4, percentage=40.0, user=CandidateInfo(full_name='Ravi'))
    return ElectionResults(
        election=ElectionSummary(id='e1', name='Senate', status='ENDED'),
        summary=ResultsSummary(total_eligible_voters=20, total_votes_cast=10, turnout_pct=50.0),
        positions=[
            PositionResult(position_id='p1', title='President', max_winners=1, total_votes=10,
                           candidates=[asha, ravi], winners=[asha]),
            PositionResult(position_id='p2', title='Treasurer', max_winners=1, total_votes=0,
                           candidates=[], winners=[]),
        ],
    )


def test_pdf_export(results):
    content = results_to_pdf(results)

    assert content.startswith(b'%PDF')
    assert len(content) > 500


def test_xlsx_export_marks_winners(results):
    sheet = load_workbook(io.BytesIO(results_to_xlsx(results))).active

    rows = [[cell.value for cell in row] for row in sheet.iter_rows()]
    assert rows == [
        ['Position', 'Candidate', 'Votes', 'Percentage', 'Winner'],
        ['President', 'Asha', 6, '60.0%', 'Yes'],
        ['President', 'Ravi', 4, '40.0%', None],
    ]
