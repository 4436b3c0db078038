"""Tests for travel order PDF and Excel exports."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from io import BytesIO

from openpyxl import load_workbook

from travel_order_portal.export import OrderExportService, order_rows, render_ctt_text
from travel_order_portal.models import (
    ApprovalStep,
    OrderStatus,
    PersonRef,
    StepRole,
    StepStatus,
)


def _approved(order_factory):
    return order_factory(
        status=OrderStatus.APPROVED,
        requester=PersonRef(id=1, first_name="Maria", last_name="Reyes", position="Engineer II"),
        approvals=[
            ApprovalStep(
                step_order=1,
                role=StepRole.RECOMMEND,
                director_id=10,
                director=PersonRef(id=10, first_name="Ana", last_name="Dela Cruz"),
                status=StepStatus.RECOMMENDED,
                remarks="Endorsed",
                acted_at=datetime(2026, 2, 2, 9, 0, tzinfo=UTC),
            ),
            ApprovalStep(
                step_order=2,
                role=StepRole.APPROVE,
                director_id=11,
                status=StepStatus.APPROVED,
                acted_at=datetime(2026, 2, 3, 9, 0, tzinfo=UTC),
            ),
        ],
    )


class TestOrderExportService:
    """Printable travel order behavior."""

    def test_pdf_filename_and_content(self, order_factory) -> None:
        filename, content = OrderExportService().to_pdf(_approved(order_factory))

        assert filename == "TRAVEL_ORDER_7.pdf"
        assert content.startswith(b"%PDF")

    def test_pdf_with_ctt_page(self, order_factory) -> None:
        service = OrderExportService()
        order = _approved(order_factory)

        filename, content = service.to_pdf(order, include_ctt=True)
        _, plain = service.to_pdf(order)

        assert filename == "TRAVEL_ORDER_7_CTT.pdf"
        assert content.startswith(b"%PDF")
        assert len(content) > len(plain)

    def test_excel_sheets_and_amount_format(self, order_factory) -> None:
        now = datetime(2026, 2, 4, 12, 0, tzinfo=UTC)

        filename, content = OrderExportService().to_excel(_approved(order_factory), now=now)

        assert filename == "TRAVEL_ORDER_7.xlsx"
        workbook = load_workbook(BytesIO(content))
        assert workbook.sheetnames == ["Travel Order", "Approvals"]

        sheet = workbook["Travel Order"]
        rows = {row[0]: row[1] for row in sheet.iter_rows(min_row=2, values_only=True)}
        assert rows["Destination"] == "Cebu City"
        assert rows["Personnel"] == "Maria Reyes"
        assert rows["Per diems / expenses"] == 4500.0
        amount_row = next(
            cell for cell in sheet["A"] if cell.value == "Per diems / expenses"
        ).row
        assert sheet.cell(row=amount_row, column=2).number_format == "#,##0.00"

        chain = list(workbook["Approvals"].iter_rows(values_only=True))
        assert chain[0] == ("Step", "Role", "Director", "Status", "Acted at", "Remarks")
        assert chain[1][:4] == (1, "recommend", "Ana Dela Cruz", "recommended")
        assert chain[2][2] == "11"
        assert chain[-1][:2] == ("Generated", now.isoformat())


def test_order_rows_fill_missing_values(order_factory) -> None:
    order = order_factory(official_station=None, per_diems_expenses=Decimal("1234.5"))

    rows = dict(order_rows(order))

    assert rows["Official station"] == "-"
    assert rows["Per diems / expenses"] == "1,234.50"
    assert rows["Status"] == "Draft"


def test_ctt_text_names_the_traveler(order_factory) -> None:
    text = render_ctt_text(_approved(order_factory))

    assert "Travel Order No. 7 to Cebu City" in text
    assert "chargeable against MOOE 2026" in text
    assert text.splitlines()[-2:] == ["Maria Reyes", "Engineer II"]
