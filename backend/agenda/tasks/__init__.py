"""Celery application and background job tasks."""
