"""메타데이터 스토리지 모듈"""

from src.services.storage.base import MetadataUploader
from src.services.storage.irys import DataItem, IrysNode, IrysUploader, build_uploaders
from src.services.storage.service import StorageService

__all__ = [
    "MetadataUploader",
    "DataItem",
    "IrysNode",
    "IrysUploader",
    "StorageService",
    "build_uploaders",
]
