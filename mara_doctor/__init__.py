"""Reconciliation and completeness checks for SAP MARA master-data exports."""

__version__ = "0.3.0"
