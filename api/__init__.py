"""
FastAPI application for the inspection billing system.

This package contains the REST API for managing closures, inspections,
reference data and background import/calculation jobs.
"""

__version__ = "1.0.0"
