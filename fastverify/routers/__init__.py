"""
FastVerify Booth - API Routers
"""

from fastverify.routers import audit, otp, session, settings, sync, voters

__all__ = ["audit", "otp", "session", "settings", "sync", "voters"]
