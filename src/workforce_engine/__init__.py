"""Attendance, leave and payroll-lock reconciliation engine."""

__version__ = "0.1.0"
