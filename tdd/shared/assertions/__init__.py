# Custom assertion helpers

from .api import (
    assert_error_response,
    assert_json_contains,
    assert_json_list_length,
    assert_not_found,
    assert_status_code,
    assert_validation_error,
)

__all__ = [
    "assert_status_code",
    "assert_json_contains",
    "assert_json_list_length",
    "assert_error_response",
    "assert_not_found",
    "assert_validation_error",
]
