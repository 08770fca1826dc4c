"""
FastVerify Booth - offline-first persistence and sync for voter verification booths.
"""

__version__ = "2.0.0"
