"""Ingestion services."""

from ledger_ingestion.services.import_service import ImportResult, ImportService

__all__ = ["ImportResult", "ImportService"]
