"""Render a tabulated ElectionResults as PDF or spreadsheet bytes."""

import io

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from models import ElectionResults
from results import winner_ids

PDF_MEDIA_TYPE = "application/pdf"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def results_to_pdf(results: ElectionResults) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, leftMargin=2 * cm, rightMargin=2 * cm, topMargin=2 * cm)
    styles = getSampleStyleSheet()

    summary = results.summary
    story = [
        Paragraph(f"Election Results: {results.election.name}", styles["Title"]),
        Paragraph(
            f"Votes cast: {summary.total_votes_cast} / eligible voters: {summary.total_eligible_voters} "
            f"(turnout {summary.turnout_pct}%)",
            styles["Normal"],
        ),
        Spacer(1, 0.5 * cm),
    ]

    for index, position in enumerate(results.positions, start=1):
        story.append(Paragraph(
            f"{index}. {position.title} (seats: {position.max_winners}, votes: {position.total_votes})",
            styles["Heading2"],
        ))
        winners = set(winner_ids(position))
        rows = [["Candidate", "Votes", "Percentage", "Winner"]]
        for candidate in position.candidates:
            rows.append([
                candidate.user.full_name,
                str(candidate.votes),
                f"{candidate.percentage}%",
                "Yes" if candidate.candidate_user_id in winners else "",
            ])
        if len(rows) == 1:
            story.append(Paragraph("No votes recorded for this position.", styles["Italic"]))
        else:
            table = Table(rows, colWidths=[8 * cm, 2.5 * cm, 3 * cm, 2.5 * cm])
            table.setStyle(TableStyle([
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#1f3b73")),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
                ("ALIGN", (1, 1), (-1, -1), "CENTER"),
            ]))
            story.append(table)
        story.append(Spacer(1, 0.4 * cm))

    doc.build(story)
    return buffer.getvalue()


def results_to_xlsx(results: ElectionResults) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Results"

    sheet.append(["Position", "Candidate", "Votes", "Percentage", "Winner"])
    header_fill = PatternFill(start_color="1F3B73", end_color="1F3B73", fill_type="solid")
    for cell in sheet[1]:
        cell.font = Font(bold=True, color="FFFFFF")
        cell.fill = header_fill

    for position in results.positions:
        winners = set(winner_ids(position))
        for candidate in position.candidates:
            sheet.append([
                position.title,
                candidate.user.full_name,
                candidate.votes,
                f"{candidate.percentage}%",
                "Yes" if candidate.candidate_user_id in winners else None,
            ])

    for column, width in zip("ABCDE", (25, 30, 10, 15, 10)):
        sheet.column_dimensions[column].width = width

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()
