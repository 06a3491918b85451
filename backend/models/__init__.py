"""Database models package."""
from models.database import Base, get_session, init_db, close_db, get_pool_status, get_engine
from models.contact import Contact
from models.connected_account import ConnectedAccount
from models.sync_job import SyncJob
from models.transaction_log import TransactionLog
from models.gbp import GBPAnalyticsSnapshot, GBPLocation, GBPMedia, GBPPost, GBPReview
from models.brightlocal import BrightLocalCampaign, BrightLocalLocation

__all__ = [
    "Base",
    "get_session",
    "init_db",
    "close_db",
    "get_pool_status",
    "get_engine",
    "Contact",
    "ConnectedAccount",
    "SyncJob",
    "TransactionLog",
    "GBPLocation",
    "GBPReview",
    "GBPPost",
    "GBPMedia",
    "GBPAnalyticsSnapshot",
    "BrightLocalLocation",
    "BrightLocalCampaign",
]
