"""Versioned API routers."""

from . import admin, appointments, availability, health

__all__ = ["admin", "appointments", "availability", "health"]
