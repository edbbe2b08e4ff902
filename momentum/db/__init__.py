"""Momentum persistence — SQLAlchemy models, column types and sessions."""
