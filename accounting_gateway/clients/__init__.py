"""Expose constructed client wrappers."""

from .accounting import AccountingClient, XeroAccountingClient
from .state_store import SQLiteStateStore
from .xero_auth import OAuthTokenExchangeError, XeroOAuthClient

__all__ = [
    "AccountingClient",
    "OAuthTokenExchangeError",
    "SQLiteStateStore",
    "XeroAccountingClient",
    "XeroOAuthClient",
]
