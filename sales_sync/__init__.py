"""
Sales channel ingestion and reconciliation.

This package pulls orders from Shiprocket, Amazon SP-API, the Flipkart
Seller API and uploaded Vyapar workbooks, normalizes them into one order
and order-item schema, and keeps the PostgreSQL store reconciled with what
each channel currently reports.
"""

__version__ = "1.0.0"
