"""
Base factory classes and utilities.

This module provides the foundation for creating test data factories
using factory_boy.
"""
from typing import Any

import factory
from faker import Faker

fake = Faker()


class BaseFactory(factory.Factory):
    """Base factory for all model factories."""

    class Meta:
        abstract = True

    @classmethod
    def _create(cls, model_class, *args, **kwargs):
        return model_class(*args, **kwargs)


def generate_filename(extension: str = "txt") -> str:
    """Generate a realistic, path-safe file name."""
    return f"{fake.unique.slug()}.{extension}"


def generate_content(size: int) -> bytes:
    """Generate ``size`` bytes of deterministic-length random data."""
    return fake.binary(length=size)


def generate_text(lines: int = 3) -> bytes:
    return ("\n".join(fake.sentence() for _ in range(lines)) + "\n").encode("utf-8")


def json_ready(data: dict[str, Any]) -> dict[str, Any]:
    """Drop unset optional fields from a payload."""
    return {key: value for key, value in data.items() if value is not None}
