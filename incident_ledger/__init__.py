"""Incident Ledger: incident tracking, post-mortems and audit trail."""

__version__ = "1.0.0"
