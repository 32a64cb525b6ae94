"""Tests for request fingerprint extraction and token verification."""

import pytest
from datetime import datetime, timedelta, timezone
from jose import jwt

from wallet_referrals.core.config import settings
from wallet_referrals.core.fingerprint import IP_MAX_LENGTH, UNKNOWN, extract_request_metadata, get_client_ip
from wallet_referrals.core.security import create_access_token, verify_token


class TestClientIp:

    def test_first_forwarded_entry_wins(self):
        headers = {
            "x-forwarded-for": "198.51.100.4, 10.0.0.1",
            "cf-connecting-ip": "192.0.2.1",
        }
        assert get_client_ip(headers) == "198.51.100.4"

    def test_falls_back_through_headers(self):
        assert get_client_ip({"cf-connecting-ip": "192.0.2.1", "x-real-ip": "192.0.2.2"}) == "192.0.2.1"
        assert get_client_ip({"x-real-ip": " 192.0.2.2 "}) == "192.0.2.2"

    def test_unknown_without_headers(self):
        assert get_client_ip({}) == UNKNOWN
        assert get_client_ip({"x-forwarded-for": " , 10.0.0.1"}) == UNKNOWN

    def test_blank_first_forwarded_entry_falls_through(self):
        headers = {"x-forwarded-for": " , 10.0.0.1", "cf-connecting-ip": "192.0.2.1"}
        assert get_client_ip(headers) == "192.0.2.1"

    def test_oversized_ip_is_truncated(self):
        assert get_client_ip({"x-forwarded-for": "9" * 200 + ", 10.0.0.1"}) == "9" * IP_MAX_LENGTH
        assert get_client_ip({"x-real-ip": "a" * 100}) == "a" * IP_MAX_LENGTH

    def test_user_agent_is_truncated(self, monkeypatch):
        monkeypatch.setattr(settings, "USER_AGENT_MAX_LENGTH", 8)

        meta = extract_request_metadata({"x-real-ip": "192.0.2.2", "user-agent": "Mozilla/5.0 (X11)"})

        assert meta.user_agent == "Mozilla/"
        assert meta.has_ip

    def test_missing_user_agent_is_unknown(self):
        meta = extract_request_metadata({})

        assert meta.user_agent == UNKNOWN
        assert not meta.has_ip


class TestTokens:

    def test_round_trip(self):
        token = create_access_token("user-1", "Person@Example.com")

        identity = verify_token(token)

        assert identity.user_id == "user-1"
        assert identity.email == "person@example.com"

    def test_tampered_token_is_rejected(self):
        token = create_access_token("user-1", "person@example.com")

        assert verify_token(token + "x") is None

    def test_expired_token_is_rejected(self):
        token = create_access_token("user-1", "person@example.com", expires_delta=timedelta(seconds=-10))

        assert verify_token(token) is None

    def test_email_from_verified_credentials(self):
        token = jwt.encode(
            {
                "sub": "user-2",
                "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
                "verified_credentials": [
                    {"format": "blockchain", "address": "0xabc"},
                    {"format": "email", "email": "wallet@example.com"},
                ],
            },
            settings.SECRET_KEY,
            algorithm=settings.ALGORITHM,
        )

        assert verify_token(token).email == "wallet@example.com"

    def test_token_without_email_is_rejected(self):
        token = jwt.encode(
            {"sub": "user-3", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            settings.SECRET_KEY,
            algorithm=settings.ALGORITHM,
        )

        assert verify_token(token) is None
