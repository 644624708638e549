import pytest

from app.core.errors import AppError, ErrorKind, not_found, status_for_kind, store_failure, validation_error


@pytest.mark.parametrize(
    "kind, status_code",
    [
        (ErrorKind.NOT_FOUND, 404),
        (ErrorKind.VALIDATION, 400),
        (ErrorKind.CONFLICT, 409),
        (ErrorKind.UNAUTHORIZED, 401),
        (ErrorKind.FORBIDDEN, 403),
        (ErrorKind.STORE_FAILURE, 503),
    ],
)
def test_status_for_kind(kind, status_code):
    assert status_for_kind(kind) == status_code
    assert AppError(kind, "x").status_code == status_code


def test_every_kind_has_a_status():
    for kind in ErrorKind:
        assert isinstance(status_for_kind(kind), int)


def test_to_dict():
    error = AppError(ErrorKind.FORBIDDEN, "Access denied", entity="role")
    assert error.to_dict() == {"error": "forbidden", "message": "Access denied", "entity": "role"}
    assert str(error) == "Access denied"


def test_helpers():
    assert not_found("user_role").message == "User role not found"
    assert not_found("role", "Role(s) not found: x").message == "Role(s) not found: x"
    assert validation_error("bad").kind is ErrorKind.VALIDATION
    assert store_failure("down", entity="user_permission").entity == "user_permission"
