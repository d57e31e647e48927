"""Expose constructed client wrappers."""

from .azure_ad import AzureTokenClient, SkypeToken, TokenResponse
from .browser import BrowserAutomation, BrowserHandle

__all__ = [
    "AzureTokenClient",
    "BrowserAutomation",
    "BrowserHandle",
    "SkypeToken",
    "TokenResponse",
]
