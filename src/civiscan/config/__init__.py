"""
CiviScan Configuration Module

Provides centralized configuration management for the check-in client.
"""

from .schema import (
    BackendConfig,
    ClientConfig,
    OAuthConfig,
    RosterConfig,
    ScannerConfig,
    StatusConfig,
    StorageConfig,
)
from .loader import load_config, load_config_from_file

__all__ = [
    "BackendConfig",
    "ClientConfig",
    "OAuthConfig",
    "RosterConfig",
    "ScannerConfig",
    "StatusConfig",
    "StorageConfig",
    "load_config",
    "load_config_from_file",
]
