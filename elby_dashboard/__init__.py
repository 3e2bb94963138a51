"""
Elby dashboard backend: SDMS cache synchronization and engagement metrics.
"""

__version__ = "1.0.0"
