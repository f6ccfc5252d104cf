"""
Test Buddy - Error Taxonomy Tests
"""
import asyncio

import pytest
from google.api_core import exceptions as gexc

from testbuddy.core.errors import ErrorKind, StoreError, ValidationError
from testbuddy.main import status_for
from testbuddy.store.firestore import to_firestore_value, translate_exception
from testbuddy.store.base import SERVER_TIMESTAMP


@pytest.mark.parametrize("kind", [
    ErrorKind.UNAVAILABLE,
    ErrorKind.RESOURCE_EXHAUSTED,
    ErrorKind.ABORTED,
    ErrorKind.INTERNAL,
    ErrorKind.NETWORK,
    ErrorKind.TIMEOUT,
    ErrorKind.AUTH_TOO_MANY_REQUESTS,
])
def test_retryable_kinds(kind):
    assert StoreError(kind, "x").retryable is True


@pytest.mark.parametrize("kind", [
    ErrorKind.PERMISSION_DENIED,
    ErrorKind.NOT_FOUND,
    ErrorKind.VALIDATION,
    ErrorKind.AUTH_WRONG_PASSWORD,
    ErrorKind.UNKNOWN,
    ErrorKind.FAILED_PRECONDITION,
])
def test_non_retryable_kinds(kind):
    assert StoreError(kind, "x").retryable is False


def test_user_message_and_dict():
    error = StoreError(ErrorKind.NOT_FOUND, "Test t1 not found")

    assert error.user_message == "The requested data was not found."
    assert error.to_dict() == {
        "code": "not-found",
        "message": "The requested data was not found.",
        "detail": "Test t1 not found",
        "retryable": False,
    }
    assert StoreError(ErrorKind.DATA_LOSS, "x").user_message.startswith("An unexpected error")


def test_validation_error_carries_field():
    error = ValidationError("Folder name is required", field="name")

    assert isinstance(error, StoreError)
    assert error.kind == ErrorKind.VALIDATION
    assert error.to_dict()["field"] == "name"


def test_from_exception_classification():
    existing = StoreError(ErrorKind.ABORTED, "x")

    assert StoreError.from_exception(existing) is existing
    assert StoreError.from_exception(asyncio.TimeoutError()).kind == ErrorKind.TIMEOUT
    assert StoreError.from_exception(ConnectionResetError("reset")).kind == ErrorKind.NETWORK
    unknown = StoreError.from_exception(KeyError("k"), context={"operation": "read"})
    assert unknown.kind == ErrorKind.UNKNOWN
    assert unknown.context == {"operation": "read"}


@pytest.mark.parametrize("exc, kind", [
    (gexc.ServiceUnavailable("down"), ErrorKind.UNAVAILABLE),
    (gexc.NotFound("missing"), ErrorKind.NOT_FOUND),
    (gexc.PermissionDenied("rules"), ErrorKind.PERMISSION_DENIED),
    (gexc.AlreadyExists("dup"), ErrorKind.ALREADY_EXISTS),
    (gexc.Aborted("contention"), ErrorKind.ABORTED),
    (gexc.DeadlineExceeded("slow"), ErrorKind.TIMEOUT),
    (gexc.ResourceExhausted("quota"), ErrorKind.RESOURCE_EXHAUSTED),
    (gexc.FailedPrecondition("index"), ErrorKind.FAILED_PRECONDITION),
    (gexc.BadRequest("bad"), ErrorKind.UNKNOWN),
])
def test_firestore_exceptions_are_translated(exc, kind):
    error = translate_exception(exc, "get users/u1")

    assert error.kind == kind
    assert error.cause is exc
    assert error.message.startswith("get users/u1")


def test_firestore_sentinels():
    from google.cloud import firestore

    value = to_firestore_value({"at": SERVER_TIMESTAMP, "nested": [{"at": SERVER_TIMESTAMP}], "n": 1})

    assert value["at"] is firestore.SERVER_TIMESTAMP
    assert value["nested"][0]["at"] is firestore.SERVER_TIMESTAMP
    assert value["n"] == 1


@pytest.mark.parametrize("kind, status", [
    (ErrorKind.VALIDATION, 422),
    (ErrorKind.NOT_FOUND, 404),
    (ErrorKind.PERMISSION_DENIED, 403),
    (ErrorKind.UNAUTHENTICATED, 401),
    (ErrorKind.AUTH_WRONG_PASSWORD, 401),
    (ErrorKind.AUTH_EMAIL_ALREADY_IN_USE, 409),
    (ErrorKind.UNAVAILABLE, 503),
    (ErrorKind.TIMEOUT, 503),
    (ErrorKind.DATA_LOSS, 500),
])
def test_http_status_mapping(kind, status):
    assert status_for(StoreError(kind, "x")) == status
