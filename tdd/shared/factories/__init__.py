# Test data factories

from .base import BaseFactory, generate_content, generate_filename, generate_text
from .models import AuthorFactory, UploadSessionFactory
from .api import (
    author_payload,
    directory_payload,
    move_payload,
    upload_complete_payload,
    upload_init_payload,
)
from .settings import make_settings

__all__ = [
    # Base utilities
    "BaseFactory",
    "generate_content",
    "generate_filename",
    "generate_text",
    # Model factories
    "AuthorFactory",
    "UploadSessionFactory",
    # API factories
    "author_payload",
    "directory_payload",
    "move_payload",
    "upload_complete_payload",
    "upload_init_payload",
    # Settings
    "make_settings",
]
