import hashlib
import hmac
import time

from fulfillment_engine.domain.signatures import (
    compute_signature,
    constant_time_equal,
    parse_signature_header,
    signature_age_seconds,
    verify,
    verify_any,
)

BODY = b'{"event_type":"transaction.completed","data":{"id":"txn_01","customer_id":"ctm_01"}}'
SECRET = "pdl_ntfset_secret_current"


def _header(body: bytes, secret: str, ts: str = "1700000000") -> str:
    digest = hmac.new(secret.encode(), f"{ts}:".encode() + body, hashlib.sha256).hexdigest()
    return f"ts={ts};h1={digest}"


def test_valid_signature_verifies():
    assert verify(BODY, _header(BODY, SECRET), SECRET) is True


def test_signature_matches_reference_hmac():
    expected = hmac.new(SECRET.encode(), b"1700000000:" + BODY, hashlib.sha256).hexdigest()
    assert compute_signature(BODY, "1700000000", SECRET) == expected


def test_flipping_any_signature_character_fails():
    header = _header(BODY, SECRET)
    digest = parse_signature_header(header)["h1"]
    for index in range(len(digest)):
        replacement = "0" if digest[index] != "0" else "1"
        tampered = digest[:index] + replacement + digest[index + 1:]
        assert verify(BODY, f"ts=1700000000;h1={tampered}", SECRET) is False


def test_tampered_body_or_timestamp_fails():
    header = _header(BODY, SECRET)
    assert verify(BODY + b" ", header, SECRET) is False
    digest = parse_signature_header(header)["h1"]
    assert verify(BODY, f"ts=1700000001;h1={digest}", SECRET) is False


def test_empty_secret_never_verifies():
    header = _header(BODY, "")
    assert verify(BODY, header, "") is False
    assert verify(BODY, header, None) is False


def test_missing_or_malformed_header_returns_false():
    assert verify(BODY, None, SECRET) is False
    assert verify(BODY, "", SECRET) is False
    assert verify(BODY, "garbage", SECRET) is False
    assert verify(BODY, "ts=1700000000", SECRET) is False
    assert verify(BODY, "h1=abcdef", SECRET) is False
    assert verify(BODY, ";;=;", SECRET) is False


def test_uppercase_digest_is_accepted():
    header = _header(BODY, SECRET)
    digest = parse_signature_header(header)["h1"]
    assert verify(BODY, f"ts=1700000000; h1={digest.upper()}", SECRET) is True


def test_rotation_accepts_current_and_previous_secret():
    previous = "pdl_ntfset_secret_previous"
    secrets = [SECRET, previous]
    assert verify_any(BODY, _header(BODY, SECRET), secrets) is True
    assert verify_any(BODY, _header(BODY, previous), secrets) is True
    assert verify_any(BODY, _header(BODY, "someone-else"), secrets) is False
    assert verify_any(BODY, _header(BODY, SECRET), [None, ""]) is False


def test_constant_time_equal():
    assert constant_time_equal("abc", "abc") is True
    assert constant_time_equal("abc", "abd") is False
    assert constant_time_equal("abc", "abcd") is False
    assert constant_time_equal("", "") is True


def test_signature_age_seconds():
    now_ts = str(int(time.time()))
    age = signature_age_seconds(f"ts={now_ts};h1=x")
    assert age is not None and age < 5
    assert signature_age_seconds("ts=notanumber;h1=x") is None
    assert signature_age_seconds(None) is None
