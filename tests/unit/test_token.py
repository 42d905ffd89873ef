import base64
from datetime import datetime, timedelta, timezone

import pytest

from sql_datalayer.changes.token import decode_token, encode_token, format_since
from sql_datalayer.errors import DecodeError


@pytest.mark.unit
def test_token_is_urlsafe_base64_of_microsecond_timestamp():
    bound = datetime(2024, 1, 2, 3, 4, 5, 123456)

    token = encode_token(bound)

    assert token == base64.urlsafe_b64encode(b"2024-01-02 03:04:05.123456").decode("ascii")
    assert decode_token(token) == bound


@pytest.mark.unit
def test_aware_bound_is_rendered_in_utc():
    bound = datetime(2024, 1, 2, 5, 0, 0, tzinfo=timezone(timedelta(hours=2)))

    assert format_since(bound) == "2024-01-02 03:00:00.000000"
    assert decode_token(encode_token(bound)) == datetime(2024, 1, 2, 3, 0, 0)


@pytest.mark.unit
def test_token_without_fraction_is_accepted():
    token = base64.urlsafe_b64encode(b"2024-01-02 03:04:05").decode("ascii")

    assert decode_token(token) == datetime(2024, 1, 2, 3, 4, 5)


@pytest.mark.unit
@pytest.mark.parametrize(
    "token",
    [
        "not base64!",
        base64.urlsafe_b64encode(b"yesterday").decode("ascii"),
        base64.urlsafe_b64encode(b"\xff\xfe").decode("ascii"),
    ],
)
def test_malformed_tokens_raise_decode_error(token):
    with pytest.raises(DecodeError):
        decode_token(token)
