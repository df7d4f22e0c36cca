"""
Tests for auth.py — token round trip and caller identity helpers.
The middleware itself is exercised through the routes in test_server.py.
"""
from __future__ import annotations

import time

import jwt
import pytest
from aiohttp.test_utils import make_mocked_request

import auth
import config


class TestTokens:
    def test_round_trip(self):
        token = auth.sign_token({"sub": "u1", "tier": "pro"})
        assert auth.verify_token(token) == {"sub": "u1", "tier": "pro"}

    def test_wrong_secret(self):
        token = jwt.encode({"sub": "u1"}, "other-secret", algorithm="HS256")
        with pytest.raises(auth.AuthError, match="Invalid"):
            auth.verify_token(token)

    def test_expired(self):
        token = auth.sign_token({"sub": "u1", "exp": int(time.time()) - 60})
        with pytest.raises(auth.AuthError, match="expired"):
            auth.verify_token(token)

    def test_garbage(self):
        with pytest.raises(auth.AuthError):
            auth.verify_token("not-a-jwt")

    def test_missing_secret(self, monkeypatch):
        monkeypatch.setattr(config, "JWT_SECRET", None)
        with pytest.raises(auth.AuthError, match="JWT_SECRET"):
            auth.sign_token({"sub": "u1"})


class TestCallerIdentity:
    def test_claims_win_over_headers(self):
        request = make_mocked_request(
            "GET", "/api/agents", headers={"X-User-Tier": "ultra", "X-User-ID": "hdr"},
        )
        request["claims"] = {"sub": "claim-user", "tier": "basic"}
        assert auth.caller_tier(request) == "basic"
        assert auth.caller_id(request) == "claim-user"

    def test_headers_used_without_claims(self):
        request = make_mocked_request(
            "GET", "/api/agents", headers={"X-User-Tier": "pro", "X-User-ID": "u9"},
        )
        request["claims"] = {}
        assert auth.caller_tier(request) == "pro"
        assert auth.caller_id(request) == "u9"

    def test_defaults(self):
        request = make_mocked_request("GET", "/api/agents")
        assert auth.caller_tier(request) == "free"
        assert auth.caller_id(request) is None
