"""Scheduled jobs: archival pipeline, due-date reminders and the Celery scheduler."""
