"""PDF expense reports for a single trip."""

import io
import re
from collections import defaultdict
from datetime import date
from typing import Any, Dict, List, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_LEFT
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

HEADERS = ["Date", "Merchant", "Category", "Payment", "Amount"]
COL_WIDTHS = [60, 150, 95, 95, 68]


def report_filename(trip_name: Optional[str]) -> str:
    """'Spring Sales Trip' -> 'Spring_Sales_Trip_Expense_Report.pdf'."""
    name = re.sub(r"[^A-Za-z0-9]+", "_", trip_name or "").strip("_") or "Trip"
    return f"{name}_Expense_Report.pdf"


def _short_date(value: Optional[str]) -> str:
    try:
        d = date.fromisoformat(value)
        return f"{d:%b} {d.day}"
    except (TypeError, ValueError):
        return value or ""


def _long_date(value: Optional[str]) -> str:
    try:
        d = date.fromisoformat(value)
        return f"{d:%b} {d.day}, {d.year}"
    except (TypeError, ValueError):
        return value or ""


def _money(amount: float) -> str:
    return f"${amount:,.2f}"


def expense_total(expenses: List[Dict[str, Any]]) -> float:
    return round(sum(float(e.get("amount") or 0) for e in expenses), 2)


def build_expense_report(trip: Dict[str, Any], expenses: List[Dict[str, Any]],
                         company_name: Optional[str] = None) -> bytes:
    """Render the trip's expenses as a PDF and return the bytes.

    Expenses are listed in date order with an optional description line under
    each row, followed by the total, a per-category summary (when more than
    one category is present) and a page of receipt references.
    """
    expenses = sorted(expenses, key=lambda e: e.get("date") or "")
    total = expense_total(expenses)

    buf = io.BytesIO()
    doc = SimpleDocTemplate(buf, pagesize=letter,
                            rightMargin=54, leftMargin=54,
                            topMargin=54, bottomMargin=36,
                            title=f"{trip.get('trip_name') or 'Trip'} Expense Report")
    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle(name="ReportCenter", parent=styles["Normal"], alignment=TA_CENTER))
    styles.add(ParagraphStyle(name="ReportLeft", parent=styles["Normal"], alignment=TA_LEFT))
    styles.add(ParagraphStyle(name="ReportNote", parent=styles["Normal"], fontSize=8,
                              textColor=colors.grey, leading=10))
    story = []

    if company_name:
        story.append(Paragraph(escape(company_name), styles["ReportCenter"]))
        story.append(Spacer(1, 6))
    story.append(Paragraph("Detailed Expense Report", styles["Title"]))
    story.append(Spacer(1, 12))

    location = ", ".join(p for p in (trip.get("city"), trip.get("country")) if p)
    story.append(Paragraph(f"Trip: {escape(trip.get('trip_name') or '')}", styles["ReportLeft"]))
    story.append(Paragraph(f"Location: {escape(location)}", styles["ReportLeft"]))
    story.append(Paragraph(
        f"Dates: {_long_date(trip.get('beginning_date'))} - {_long_date(trip.get('ending_date'))}",
        styles["ReportLeft"],
    ))
    if trip.get("client_or_event"):
        story.append(Paragraph(f"Client/Event: {escape(trip['client_or_event'])}", styles["ReportLeft"]))
    story.append(Spacer(1, 18))

    edata = [HEADERS]
    description_rows = []
    for e in expenses:
        edata.append([
            _short_date(e.get("date")),
            (e.get("merchant") or "")[:30],
            (e.get("category") or "")[:18],
            (e.get("payment_method") or "N/A")[:18],
            _money(float(e.get("amount") or 0)),
        ])
        if e.get("description"):
            description_rows.append(len(edata))
            edata.append(["", Paragraph(escape(e["description"][:120]), styles["ReportNote"]), "", "", ""])
    edata.append(["", "", "", "TOTAL:", _money(total)])

    style = [
        ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
        ("ALIGN", (-1, 0), (-1, -1), "RIGHT"),
        ("LINEBELOW", (0, 0), (-1, 0), 0.5, colors.black),
        ("LINEABOVE", (0, -1), (-1, -1), 1, colors.black),
        ("BOTTOMPADDING", (0, 0), (-1, 0), 8),
    ]
    for row in description_rows:
        style.append(("SPAN", (1, row), (-1, row)))
    etable = Table(edata, colWidths=COL_WIDTHS, repeatRows=1)
    etable.setStyle(TableStyle(style))
    story.append(etable)
    story.append(Spacer(1, 18))

    by_category = defaultdict(float)
    for e in expenses:
        by_category[e.get("category") or "Other"] += float(e.get("amount") or 0)

    if len(by_category) > 1:
        story.append(Paragraph("Summary by Category", styles["Heading3"]))
        story.append(Spacer(1, 6))
        cdata = [["Category", "Total"]]
        for category, amount in sorted(by_category.items()):
            cdata.append([category, _money(amount)])
        cdata.append(["Grand Total", _money(total)])
        ctable = Table(cdata, colWidths=[200, 100])
        ctable.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
            ("ALIGN", (1, 0), (1, -1), "RIGHT"),
            ("GRID", (0, 0), (-1, -1), 0.5, colors.black),
        ]))
        story.append(ctable)

    receipts = [e for e in expenses if e.get("receipt_url")]
    if receipts:
        story.append(PageBreak())
        story.append(Paragraph("Receipts", styles["Title"]))
        story.append(Spacer(1, 12))
        for e in receipts:
            label = f"{e.get('merchant') or ''} - {_money(float(e.get('amount') or 0))} ({_long_date(e.get('date'))})"
            story.append(Paragraph(escape(label), styles["Heading4"]))
            story.append(Paragraph(escape(e["receipt_url"]), styles["ReportNote"]))
            story.append(Spacer(1, 8))

    doc.build(story)
    print(f"[REPORT] Built expense report for trip {trip.get('trip_id')}: "
          f"{len(expenses)} expenses, total {_money(total)}")
    return buf.getvalue()
