import pytest

from errors import (
    STATUS_BY_KIND,
    ConflictError,
    ErrorKind,
    NetworkError,
    NotFoundError,
    UnauthorizedError,
    UpstreamFetchError,
    ValidationError,
    error_for_status,
)


def test_every_kind_has_a_status():
    assert set(STATUS_BY_KIND) == set(ErrorKind)


@pytest.mark.parametrize(
    "status_code, expected",
    [
        (400, ValidationError),
        (422, ValidationError),
        (401, UnauthorizedError),
        (403, UnauthorizedError),
        (404, NotFoundError),
        (409, ConflictError),
        (500, UpstreamFetchError),
        (502, UpstreamFetchError),
        (503, NetworkError),
    ],
)
def test_status_maps_back_to_error_class(status_code, expected):
    error = error_for_status(status_code, "boom", "ctx")
    assert type(error) is expected
    assert error.message == "boom"
    assert error.details == "ctx"


def test_error_payload_omits_empty_details():
    assert ConflictError("Booking is cancelled").to_dict() == {"error": "Booking is cancelled"}
    assert NotFoundError("Booking not found", "b1").to_dict() == {"error": "Booking not found", "details": "b1"}
