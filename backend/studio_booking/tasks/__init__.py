"""Celery app, beat schedule and background tasks."""
