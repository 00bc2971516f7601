"""
Report Courier - ships completed report files from a drop directory
to a remote collector.
"""

__version__ = "1.0.0"
