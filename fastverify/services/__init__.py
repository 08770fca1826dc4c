"""
FastVerify Booth - Services
"""

from fastverify.services.container import BoothServices
from fastverify.services.store import Collection, LocalStore
from fastverify.services.sync_engine import SyncEngine
from fastverify.services.scheduler import SyncScheduler

__all__ = [
    "BoothServices",
    "Collection",
    "LocalStore",
    "SyncEngine",
    "SyncScheduler",
]
