"""
Excel report generator for reconciliation results.
Creates multi-sheet workbooks with formatted output.
"""

from collections import Counter
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional
import logging

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Border, Side
from openpyxl.worksheet.worksheet import Worksheet

from ..config import ReconConfig, SheetConfig
from ..models.recorded_transaction import RecordedTransaction
from ..models.responses import (
    ExistingTransactionResponse,
    GeneratedTransactionResponse,
    IncomeStatement,
    PeriodReport,
    ReconciliationSummary,
    UnmatchedResponse,
)
from ..utils.exceptions import ReportGenerationError

logger = logging.getLogger(__name__)

# Style definitions
HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True)
MATCH_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
GENERATED_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")
ERROR_FILL = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)


def _number(value: Optional[Decimal]) -> Any:
    return float(value) if value is not None else ""


def _format_postings(transaction: RecordedTransaction) -> str:
    return "; ".join(
        f"{p.paccount} {p.amount if p.amount is not None else '?'} {p.commodity or ''}".strip()
        for p in transaction.tpostings
    )


def _at(values: list[Decimal], index: int) -> Optional[Decimal]:
    return values[index] if index < len(values) else None


class ExcelReportGenerator:
    """Generates Excel reconciliation reports with multiple sheets."""

    def __init__(self, config: ReconConfig):
        """
        Initialize the report generator.

        Args:
            config: Application configuration
        """
        self.config = config
        self.output_config = config.output.excel
        self.sheet_config = config.output.sheets

    def generate_report(
        self,
        summary: ReconciliationSummary,
        existing: list[ExistingTransactionResponse],
        generated: list[GeneratedTransactionResponse],
        unmatched: list[UnmatchedResponse],
        output_path: Path,
        income_statement: Optional[IncomeStatement] = None,
        net_worth: Optional[PeriodReport] = None,
    ) -> Path:
        """
        Generate the complete reconciliation report.

        Args:
            summary: Reconciliation summary
            existing: Existing rows with running totals
            generated: Transactions generated from rules
            unmatched: Real transactions no rule applied to
            output_path: Path for output file
            income_statement: Ledger-wide income statement, sheet skipped if None
            net_worth: Ledger-wide balance sheet, sheet skipped if None

        Returns:
            Path to generated report

        Raises:
            ReportGenerationError: If the workbook can't be saved
        """
        logger.info(f"Generating Excel report: {output_path}")

        wb = Workbook()

        # Remove default sheet
        if wb.active:
            wb.remove(wb.active)

        sheets = self.sheet_config
        if sheets.summary.enabled:
            self._create_summary_sheet(wb, sheets.summary, summary)
        if sheets.existing.enabled:
            self._create_existing_sheet(wb, sheets.existing, existing)
        if sheets.generated.enabled:
            self._create_generated_sheet(wb, sheets.generated, generated)
        if sheets.unmatched.enabled:
            self._create_unmatched_sheet(wb, sheets.unmatched, unmatched)
        if sheets.duplicates.enabled:
            self._create_duplicates_sheet(wb, sheets.duplicates, summary, existing)
        if income_statement is not None and sheets.income_statement.enabled:
            self._create_income_statement_sheet(wb, sheets.income_statement, income_statement)
        if net_worth is not None and sheets.net_worth.enabled:
            self._create_period_sheet(wb, sheets.net_worth, net_worth)

        if not wb.sheetnames:
            raise ReportGenerationError("All report sheets are disabled")

        output_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            wb.save(output_path)
        except OSError as e:
            raise ReportGenerationError(f"Failed to save report {output_path}: {e}") from e
        logger.info(f"Report saved: {output_path}")

        return output_path

    def _create_summary_sheet(
        self, wb: Workbook, sheet: SheetConfig, summary: ReconciliationSummary
    ) -> None:
        """Create the summary sheet with key metrics."""
        ws = wb.create_sheet(sheet.name)

        ws["A1"] = "Ledger Import Reconciliation Summary"
        ws["A1"].font = Font(size=16, bold=True)
        ws.merge_cells("A1:D1")

        ws["A3"] = "Account"
        ws["A3"].font = Font(bold=True)
        account_info = [
            ("Import Account:", summary.source_id),
            ("Ledger Account:", summary.hledger_account),
            (
                "Reconciliation Date:",
                summary.reconciliation_date.strftime("%Y-%m-%d %H:%M:%S"),
            ),
            ("Period:", f"{summary.period_start or '-'} to {summary.period_end or '-'}"),
            ("Configuration:", summary.config_file_used or "defaults"),
        ]
        row = 4
        for label, value in account_info:
            ws[f"A{row}"] = label
            ws[f"B{row}"] = str(value)
            row += 1

        row += 1
        ws[f"A{row}"] = "Transaction Counts"
        ws[f"A{row}"].font = Font(bold=True)
        count_data = [
            ("Real Transactions:", summary.total_real_transactions),
            ("Recorded Transactions:", summary.total_recorded_transactions),
            ("Existing Rows:", summary.existing_count),
            ("Rows With Errors:", summary.error_row_count),
            ("Generated From Rules:", summary.generated_count),
            ("Unmatched:", summary.unmatched_count),
            ("Duplicate Ids:", len(summary.duplicate_ids)),
            ("Recorded Rate:", f"{summary.match_rate:.1f}%"),
        ]
        for label, value in count_data:
            row += 1
            ws[f"A{row}"] = label
            ws[f"B{row}"] = value

        row += 2
        ws[f"A{row}"] = "Balances"
        ws[f"A{row}"].font = Font(bold=True)
        balance_data = [
            ("Real Balance:", summary.real_balance),
            ("Recorded Balance:", summary.recorded_balance),
            ("Difference:", summary.balance_difference),
        ]
        for label, value in balance_data:
            row += 1
            ws[f"A{row}"] = label
            ws[f"B{row}"] = float(value)
            if label == "Difference:" and value != 0:
                ws[f"B{row}"].fill = ERROR_FILL

        ws.column_dimensions["A"].width = 30
        ws.column_dimensions["B"].width = 40

    def _create_existing_sheet(
        self, wb: Workbook, sheet: SheetConfig, rows: list[ExistingTransactionResponse]
    ) -> None:
        """Create the existing transactions sheet, newest first."""
        ws = wb.create_sheet(sheet.name)
        headers = [
            "Id",
            "Ledger Date",
            "Description",
            "Recorded Amount",
            "Real Date",
            "Real Amount",
            "Recorded Balance",
            "Real Balance",
            "Errors",
        ]
        self._write_headers(ws, headers)

        for row_num, row in enumerate(rows, start=2):
            real = row.real_transaction
            row_data = [
                row.id or "",
                row.recorded_transaction.tdate,
                row.recorded_transaction.tdescription,
                _number(row.recorded_amount),
                real.get_date() if real is not None else "",
                _number(row.real_amount),
                float(row.recorded_cumulative),
                float(row.real_cumulative),
                "; ".join(row.errors),
            ]
            fill = ERROR_FILL if row.has_errors else MATCH_FILL
            self._write_row(ws, row_num, row_data, fill)

        self._auto_fit_columns(ws)

    def _create_generated_sheet(
        self, wb: Workbook, sheet: SheetConfig, generated: list[GeneratedTransactionResponse]
    ) -> None:
        ws = wb.create_sheet(sheet.name)
        headers = ["Id", "Date", "Description", "Postings", "Rule"]
        self._write_headers(ws, headers)

        for row_num, item in enumerate(generated, start=2):
            txn = item.recorded_transaction
            row_data = [
                item.real_transaction.id,
                txn.tdate,
                txn.tdescription,
                _format_postings(txn),
                item.rule.display_name,
            ]
            self._write_row(ws, row_num, row_data, GENERATED_FILL)

        self._auto_fit_columns(ws)

    def _create_unmatched_sheet(
        self, wb: Workbook, sheet: SheetConfig, unmatched: list[UnmatchedResponse]
    ) -> None:
        ws = wb.create_sheet(sheet.name)
        headers = ["Id", "Date", "Amount", "Currency", "Fields"]
        self._write_headers(ws, headers)

        for row_num, item in enumerate(unmatched, start=2):
            real = item.real_transaction
            details = ", ".join(
                f"{k}={v}" for k, v in real.fields().items() if k != "id" and v not in (None, "")
            )
            row_data = [
                real.id,
                real.get_date(),
                _number(real.get_amount()),
                real.get_currency() or "",
                details,
            ]
            self._write_row(ws, row_num, row_data, ERROR_FILL)

        self._auto_fit_columns(ws)

    def _create_duplicates_sheet(
        self,
        wb: Workbook,
        sheet: SheetConfig,
        summary: ReconciliationSummary,
        rows: list[ExistingTransactionResponse],
    ) -> None:
        """One row per recorded transaction carrying a duplicate id."""
        ws = wb.create_sheet(sheet.name)
        headers = ["Id", "Occurrences", "Ledger Date", "Description"]
        self._write_headers(ws, headers)

        occurrences = Counter(r.id for r in rows if r.id in summary.duplicate_ids)
        row_num = 2
        for row in rows:
            if row.id not in summary.duplicate_ids:
                continue
            row_data = [
                row.id,
                occurrences[row.id],
                row.recorded_transaction.tdate,
                row.recorded_transaction.tdescription,
            ]
            self._write_row(ws, row_num, row_data, ERROR_FILL)
            row_num += 1

        self._auto_fit_columns(ws)

    def _create_period_sheet(
        self, wb: Workbook, sheet: SheetConfig, report: PeriodReport
    ) -> Worksheet:
        """One row per month: section totals and net."""
        ws = wb.create_sheet(sheet.name)
        sections = list(report.sections)
        self._write_headers(ws, ["Month", *sections, "Net"])

        for index, month_end in enumerate(report.dates):
            row_data = [month_end]
            row_data += [_number(_at(report.sections[name], index)) for name in sections]
            net = _at(report.net, index)
            row_data.append(_number(net))
            fill = ERROR_FILL if net is not None and net < 0 else MATCH_FILL
            self._write_row(ws, index + 2, row_data, fill)

        self._auto_fit_columns(ws)
        return ws

    def _create_income_statement_sheet(
        self, wb: Workbook, sheet: SheetConfig, statement: IncomeStatement
    ) -> None:
        """Monthly totals followed by the largest revenues and expenses."""
        ws = self._create_period_sheet(wb, sheet, statement.report)

        row_num = ws.max_row + 2
        ws.cell(row=row_num, column=1, value="Top Transactions").font = Font(bold=True)
        row_num += 1
        self._write_headers(ws, ["Month", "Kind", "Date", "Description", "Postings"], row_num)

        for kind, per_month in (
            ("Revenue", statement.top_revenues),
            ("Expense", statement.top_expenses),
        ):
            for month_end, transactions in zip(statement.report.dates, per_month):
                for txn in transactions:
                    row_num += 1
                    row_data = [
                        month_end,
                        kind,
                        txn.tdate,
                        txn.tdescription,
                        _format_postings(txn),
                    ]
                    self._write_row(ws, row_num, row_data, GENERATED_FILL)

        self._auto_fit_columns(ws)

    def _write_headers(self, ws: Worksheet, headers: list[str], row: int = 1) -> None:
        for col, header in enumerate(headers, start=1):
            cell = ws.cell(row=row, column=col, value=header)
            cell.fill = HEADER_FILL
            cell.font = HEADER_FONT
            cell.border = THIN_BORDER

    def _write_row(
        self, ws: Worksheet, row_num: int, row_data: list[Any], fill: PatternFill
    ) -> None:
        for col, value in enumerate(row_data, start=1):
            cell = ws.cell(row=row_num, column=col, value=value)
            cell.border = THIN_BORDER
            cell.fill = fill

    def _auto_fit_columns(self, ws: Worksheet) -> None:
        """Auto-fit column widths based on content."""
        for column_cells in ws.columns:
            max_length = 0
            column = column_cells[0].column_letter

            for cell in column_cells:
                if cell.value is not None:
                    max_length = max(max_length, len(str(cell.value)))

            ws.column_dimensions[column].width = min(max_length + 2, 50)
