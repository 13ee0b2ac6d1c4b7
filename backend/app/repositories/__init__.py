"""Repository layer for database operations"""

from .base import BaseRepository
from .build import BuildRepository
from .notification import NotificationRepository
from .pipeline import PipelineRepository

__all__ = [
    "BaseRepository",
    "BuildRepository",
    "NotificationRepository",
    "PipelineRepository",
]
