"""PDF and Excel exports of travel orders."""

from __future__ import annotations

import io
from collections.abc import Mapping
from datetime import UTC, date, datetime
from decimal import Decimal

from jinja2 import BaseLoader, Environment, select_autoescape
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import (
    Image,
    PageBreak,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from .models import ApprovalStep, StepRole, TravelOrder

_TEXT_ENV = Environment(
    loader=BaseLoader(),
    autoescape=select_autoescape(
        enabled_extensions=("html",),
        default_for_string=False,
        default=True,
    ),
)

CTT_TEMPLATE = """This is to certify that I have completed the travel authorized in \
Travel Order No. {{ order.id }} to {{ order.destination }} from {{ start }} to {{ end }} \
for the purpose of {{ order.travel_purpose }}{% if order.appropriation %}, chargeable \
against {{ order.appropriation }}{% endif %}.

{{ traveler }}
{{ position or "" }}"""

_EMPTY = "-"


def _format_date(value: date | datetime | None) -> str:
    if value is None:
        return _EMPTY
    if isinstance(value, datetime):
        return value.strftime("%b %d, %Y %H:%M")
    return value.strftime("%b %d, %Y")


def _format_amount(value: Decimal | None) -> str:
    if value is None:
        return _EMPTY
    return f"{value.quantize(Decimal('0.01')):,}"


def _escape(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def order_rows(order: TravelOrder) -> list[tuple[str, str]]:
    """Label and value pairs for the travel order body."""

    return [
        ("Personnel", order.personnel_name or _EMPTY),
        ("Purpose", order.travel_purpose or _EMPTY),
        ("Destination", order.destination or _EMPTY),
        ("Official station", order.official_station or _EMPTY),
        ("Start date", _format_date(order.start_date)),
        ("End date", _format_date(order.end_date)),
        ("Objectives", order.objectives or _EMPTY),
        ("Per diems / expenses", _format_amount(order.per_diems_expenses)),
        ("Per diems note", order.per_diems_note or _EMPTY),
        ("Assistants or laborers allowed", order.assistant_or_laborers_allowed or _EMPTY),
        ("Appropriation", order.appropriation or _EMPTY),
        ("Remarks", order.remarks or _EMPTY),
        ("Status", order.status.value.capitalize()),
        ("Submitted", _format_date(order.submitted_at)),
    ]


def _step_label(step: ApprovalStep) -> str:
    return "Recommending director" if step.role == StepRole.RECOMMEND else "Approving director"


def render_ctt_text(order: TravelOrder) -> str:
    """Render the Certificate of Travel Completed body."""

    template = _TEXT_ENV.from_string(CTT_TEMPLATE)
    return template.render(
        order=order,
        start=_format_date(order.start_date),
        end=_format_date(order.end_date),
        traveler=order.personnel_name or f"Personnel #{order.requester_id}",
        position=order.requester.position if order.requester else None,
    )


class OrderExportService:
    """Generate printable PDF and Excel versions of a travel order."""

    excel_schema = ["Field", "Value"]

    def pdf_filename(self, order: TravelOrder, *, include_ctt: bool = False) -> str:
        suffix = "_CTT" if include_ctt else ""
        return f"TRAVEL_ORDER_{order.id}{suffix}.pdf"

    def excel_filename(self, order: TravelOrder) -> str:
        return f"TRAVEL_ORDER_{order.id}.xlsx"

    def to_pdf(
        self,
        order: TravelOrder,
        *,
        include_ctt: bool = False,
        signatures: Mapping[int, bytes] | None = None,
    ) -> tuple[str, bytes]:
        """Return filename and PDF content, optionally with the CTT page."""

        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            title=f"Travel Order {order.id}",
            author=order.personnel_name or "",
        )
        styles = getSampleStyleSheet()
        elements: list = [
            Paragraph("Travel Order", styles["Title"]),
            Spacer(1, 0.2 * inch),
        ]

        body = Table(
            [
                [label, Paragraph(_escape(value), styles["Normal"])]
                for label, value in order_rows(order)
            ],
            colWidths=[2.0 * inch, 4.5 * inch],
            hAlign="LEFT",
        )
        body.setStyle(
            TableStyle(
                [
                    ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
                    ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ]
            )
        )
        elements.append(body)

        if order.approvals:
            elements.append(Spacer(1, 0.2 * inch))
            elements.append(Paragraph("Approval chain", styles["Heading2"]))
            chain_rows: list[list[object]] = [
                ["Step", "Director", "Status", "Acted", "Remarks", "Signature"]
            ]
            for step in sorted(order.approvals, key=lambda s: s.step_order):
                signature: object = ""
                signed = signatures.get(step.director_id) if signatures else None
                if signed and step.has_acted:
                    signature = Image(io.BytesIO(signed), width=1.0 * inch, height=0.4 * inch)
                chain_rows.append(
                    [
                        _step_label(step),
                        step.director.display_name if step.director else f"#{step.director_id}",
                        step.status.value.capitalize(),
                        _format_date(step.acted_at),
                        step.remarks or "",
                        signature,
                    ]
                )
            chain = Table(chain_rows, hAlign="LEFT", repeatRows=1)
            chain.setStyle(
                TableStyle(
                    [
                        ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
                        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
                        ("FONTSIZE", (0, 0), (-1, -1), 9),
                        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
                    ]
                )
            )
            elements.append(chain)

        if include_ctt:
            elements.append(PageBreak())
            elements.append(Paragraph("Certificate of Travel Completed", styles["Title"]))
            elements.append(Spacer(1, 0.3 * inch))
            for paragraph in render_ctt_text(order).split("\n"):
                elements.append(Paragraph(_escape(paragraph) or "&nbsp;", styles["Normal"]))

        doc.build(elements)
        return self.pdf_filename(order, include_ctt=include_ctt), buffer.getvalue()

    def to_excel(self, order: TravelOrder, *, now: datetime | None = None) -> tuple[str, bytes]:
        """Return filename and Excel workbook content."""

        from openpyxl import Workbook  # type: ignore[import-untyped]

        generated_at = now or datetime.now(UTC)
        wb = Workbook()
        ws = wb.active
        ws.title = "Travel Order"
        ws.append(self.excel_schema)
        for label, value in order_rows(order):
            ws.append([label, value])
        if order.per_diems_expenses is not None:
            amount_row = next(
                index
                for index, (label, _) in enumerate(order_rows(order), start=2)
                if label == "Per diems / expenses"
            )
            amount_cell = ws.cell(row=amount_row, column=2)
            amount_cell.value = float(order.per_diems_expenses)
            amount_cell.number_format = "#,##0.00"
        ws.column_dimensions["A"].width = 30
        ws.column_dimensions["B"].width = 60

        chain = wb.create_sheet("Approvals")
        chain.append(["Step", "Role", "Director", "Status", "Acted at", "Remarks"])
        for step in sorted(order.approvals, key=lambda s: s.step_order):
            chain.append(
                [
                    step.step_order,
                    step.role.value,
                    step.director.display_name if step.director else str(step.director_id),
                    step.status.value,
                    step.acted_at.isoformat() if step.acted_at else "",
                    step.remarks or "",
                ]
            )
        chain.append([])
        chain.append(["Generated", generated_at.isoformat()])

        buffer = io.BytesIO()
        wb.save(buffer)
        return self.excel_filename(order), buffer.getvalue()
