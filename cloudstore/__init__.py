"""Uniform object storage across S3-compatible and in-memory backends."""

from cloudstore.infra.storage.registry import create_storage, providers
from cloudstore.services.storage_service import StorageService

__all__ = ["StorageService", "create_storage", "providers"]

__version__ = "0.1.0"
