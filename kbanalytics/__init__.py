"""
kbanalytics - SQL analytics over kb.v1 events stored in DuckDB.
"""

__version__ = '0.1.0'
