"""HTTP clients for the booster backend."""

from shared.clients.base import BaseHTTPClient
from shared.clients.booster_client import BoosterServiceClient
from shared.clients.config import HTTPClientSettings, get_http_client_settings

__all__ = [
    "BaseHTTPClient",
    "HTTPClientSettings",
    "get_http_client_settings",
    "BoosterServiceClient",
]
