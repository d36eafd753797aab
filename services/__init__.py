"""
Service layer for the inspection billing system.

This package contains framework-agnostic business logic (pricing, calculation,
spreadsheet import/export, workflow and reference data) that can be used
by CLI, API, Celery tasks, or any other interface.
"""

__version__ = "1.0.0"
