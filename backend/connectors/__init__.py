"""Vendor API clients."""
from connectors.base import BaseClient
from connectors.brightlocal import BrightLocalClient
from connectors.gbp import GBPClient
from connectors.hubspot import HubSpotClient

__all__ = [
    "BaseClient",
    "BrightLocalClient",
    "GBPClient",
    "HubSpotClient",
]
