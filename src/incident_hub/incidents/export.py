"""CSV and PDF renderings of an incident list."""

import csv
import io
from datetime import datetime

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from incident_hub.incidents.models import IncidentModel
from incident_hub.users.models import UserModel

CSV_COLUMNS = [
    "ID", "Title", "Category", "Priority", "Status",
    "Created At", "Resolved At", "Created By", "Assigned To",
]


def _fmt(value: datetime | None) -> str:
    return value.isoformat() if value else ""


def _name(users: dict[str, UserModel], user_id: str | None) -> str:
    user = users.get(user_id) if user_id else None
    return user.name if user else ""


def _email(users: dict[str, UserModel], user_id: str | None) -> str:
    user = users.get(user_id) if user_id else None
    return user.email if user else ""


def to_csv(incidents: list[IncidentModel], users: dict[str, UserModel]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_COLUMNS)
    for inc in incidents:
        writer.writerow([
            inc.id,
            inc.title,
            inc.category,
            inc.priority,
            inc.status,
            _fmt(inc.created_at),
            _fmt(inc.resolved_at),
            _email(users, inc.created_by),
            _email(users, inc.assigned_to),
        ])
    return buffer.getvalue()


def to_pdf(
    incidents: list[IncidentModel],
    users: dict[str, UserModel],
    generated_by: str,
) -> bytes:
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4
    margin = 40
    y = height - margin

    def line(text: str, size: int = 10, bold: bool = False, indent: int = 0) -> None:
        nonlocal y
        if y < margin:
            pdf.showPage()
            y = height - margin
        pdf.setFont("Helvetica-Bold" if bold else "Helvetica", size)
        pdf.drawString(margin + indent, y, text[:110])
        y -= size + 4

    pdf.setTitle("Incident Report Export")
    pdf.setFont("Helvetica-Bold", 18)
    pdf.drawCentredString(width / 2, y, "Incident Report Export")
    y -= 28
    line(f"Generated: {datetime.now().isoformat(timespec='seconds')}")
    line(f"Generated by: {generated_by}")
    line(f"Total incidents: {len(incidents)}")
    y -= 10

    for index, inc in enumerate(incidents, start=1):
        line(f"{index}. {inc.title}", size=12, bold=True)
        line(f"Category: {inc.category}   Priority: {inc.priority}   Status: {inc.status}", indent=12)
        line(f"Reported by: {_name(users, inc.created_by) or 'Unknown'}", indent=12)
        line(f"Incident date: {_fmt(inc.incident_date)}", indent=12)
        if inc.assigned_to:
            line(f"Assigned to: {_name(users, inc.assigned_to)}", indent=12)
        if inc.resolved_at:
            line(f"Resolved at: {_fmt(inc.resolved_at)}", indent=12)
        line(f"Description: {inc.description}", indent=12)
        y -= 6

    pdf.save()
    return buffer.getvalue()
