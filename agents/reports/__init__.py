"""Reports Agent - PDF expense reports."""

from .expense_report import build_expense_report, expense_total, report_filename

__all__ = ["build_expense_report", "expense_total", "report_filename"]
