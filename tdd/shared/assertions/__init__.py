# Custom assertion helpers

from .api import (
    assert_commit_response,
    assert_error_response,
    assert_json_contains,
    assert_not_found,
    assert_partial_content,
    assert_status_code,
    assert_validation_error,
)
from .models import (
    assert_commit_hash,
    assert_entry_names,
    assert_model_fields,
)

__all__ = [
    # API assertions
    "assert_status_code",
    "assert_json_contains",
    "assert_error_response",
    "assert_not_found",
    "assert_validation_error",
    "assert_commit_response",
    "assert_partial_content",
    # Model assertions
    "assert_model_fields",
    "assert_commit_hash",
    "assert_entry_names",
]
