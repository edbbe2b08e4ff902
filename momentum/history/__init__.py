"""Completion-history ledger."""
