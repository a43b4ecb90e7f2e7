"""Clients for the external services martlink talks to."""

from martlink.clients.airbridge import AirbridgeClient
from martlink.clients.google_sheets import GoogleSheetsClient

__all__ = ["AirbridgeClient", "GoogleSheetsClient"]
