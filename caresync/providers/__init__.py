"""Upstream CGM provider clients."""

from caresync.providers.base import SyncResult
from caresync.providers.nightscout import NightscoutClient
from caresync.providers.oauth import DexcomOAuthClient
from caresync.providers.share import DexcomShareClient

__all__ = [
    "SyncResult",
    "DexcomShareClient",
    "DexcomOAuthClient",
    "NightscoutClient",
]
