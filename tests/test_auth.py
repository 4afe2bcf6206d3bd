from auth import issue_token, verify_token
from config import get_settings


def test_token_round_trip() -> None:
    token = issue_token(42)
    assert verify_token(token) == 42


def test_tampered_token_is_rejected() -> None:
    token = issue_token(42)
    assert verify_token(token[:-2] + "xx") is None
    assert verify_token("not-a-token") is None


def test_token_from_other_secret_is_rejected() -> None:
    settings = get_settings()
    previous = settings.session_secret
    token = issue_token(7)
    try:
        settings.session_secret = "rotated-secret"
        assert verify_token(token) is None
    finally:
        settings.session_secret = previous
