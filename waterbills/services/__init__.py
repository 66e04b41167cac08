"""Ledger services: data access, penalties, allocation, recording, reversal and cache."""
