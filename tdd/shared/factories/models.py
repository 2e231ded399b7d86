"""
Model factories for storage dataclasses.
"""
import time

import factory

from vfiles.models import Author, UploadSession

from .base import BaseFactory, fake


class AuthorFactory(BaseFactory):
    """Factory for commit identities."""

    class Meta:
        model = Author

    name = factory.LazyFunction(fake.name)
    email = factory.LazyFunction(fake.email)


class UploadSessionFactory(BaseFactory):
    """Factory for persisted upload session descriptors."""

    class Meta:
        model = UploadSession

    upload_id = factory.LazyFunction(lambda: fake.sha256())
    target_path = factory.LazyFunction(lambda: f"uploads/{fake.slug()}.bin")
    filename = factory.LazyAttribute(lambda o: o.target_path.rpartition("/")[2])
    size = 10
    mime = "application/octet-stream"
    last_modified = None
    chunk_size = 4
    total_chunks = 3
    created_at = factory.LazyFunction(time.time)
    updated_at = factory.LazyAttribute(lambda o: o.created_at)
