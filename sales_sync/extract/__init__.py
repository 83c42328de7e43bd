"""Channel connectors: raw records out of each sales channel."""

from sales_sync.extract.amazon import AmazonConnector
from sales_sync.extract.base import ChannelConnector, ChannelQuery, Page, SyncWindow
from sales_sync.extract.flipkart import FlipkartConnector
from sales_sync.extract.shiprocket import ShiprocketConnector
from sales_sync.extract.vyapar import VyaparWorkbookSource

__all__ = [
    "AmazonConnector",
    "ChannelConnector",
    "ChannelQuery",
    "FlipkartConnector",
    "Page",
    "ShiprocketConnector",
    "SyncWindow",
    "VyaparWorkbookSource",
]
