import pytest

from emitter.errors import (
    ERR_BAD_REQUEST,
    ERR_UNAUTHORIZED,
    EmitterError,
    new_error,
)


def test_new_error_is_server_error():
    err = new_error("test")
    assert err.status == 500
    assert err.message == "test"


def test_str_is_message():
    err = new_error("something failed")
    assert str(err) == "something failed"
    assert str(err) == err.message


def test_copy_for_request_leaves_original_untouched():
    cpy = ERR_BAD_REQUEST.copy()
    cpy.for_request(15)
    assert cpy.request == 15
    assert ERR_BAD_REQUEST.request == 0
    assert cpy.status == ERR_BAD_REQUEST.status
    assert cpy.message == ERR_BAD_REQUEST.message


def test_to_dict_omits_zero_request():
    assert ERR_UNAUTHORIZED.to_dict() == {
        "status": 401,
        "message": "the security key provided is not authorized to perform this operation",
    }


def test_to_dict_includes_request():
    err = EmitterError(404, "missing", request=7)
    assert err.to_dict() == {"req": 7, "status": 404, "message": "missing"}


def test_can_be_raised_and_caught():
    err = new_error("boom")
    with pytest.raises(EmitterError) as info:
        raise err
    assert info.value is err
    assert info.value.status == 500
    assert info.value.message == "boom"


@pytest.mark.parametrize("request_id", [-1, 65536])
def test_request_id_out_of_range(request_id):
    with pytest.raises(ValueError):
        new_error("x").for_request(request_id)