"""
Movidesk → Postgres incremental ticket backup.
"""

__version__ = "1.0.0"
