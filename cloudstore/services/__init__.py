from .gateway import ClientGateway
from .storage_service import StorageService

__all__ = ["ClientGateway", "StorageService"]
