"""
Automated cross-table data-quality validation pipeline
"""

__version__ = "0.1.0"
