from __future__ import annotations

from cloudstore.common.errors import (
    NotFoundError,
    StorageError,
    TransportError,
    ValidationError,
)


class TestErrors:
    def test_with_context_fills_missing_fields_only(self):
        error = NotFoundError("Object not found", path="a.txt")

        same = error.with_context(operation="get_object", container="c1", path="b.txt")

        assert same is error
        assert error.operation == "get_object"
        assert error.container == "c1"
        assert error.path == "a.txt"
        assert str(error) == (
            "Object not found (operation=get_object, container=c1, path=a.txt)"
        )

    def test_message_without_context(self):
        assert str(StorageError("boom")) == "boom"

    def test_only_transport_errors_are_retryable(self):
        assert TransportError.retryable is True
        assert ValidationError.retryable is False
        assert issubclass(TransportError, StorageError)
