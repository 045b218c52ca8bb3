"""
Project persistence.

Projects are stored as whole JSON snapshots in one SQLite database; loading
applies snapshot migrations before validation.
"""

from .service import ProjectStorageService

__all__ = ["ProjectStorageService"]
