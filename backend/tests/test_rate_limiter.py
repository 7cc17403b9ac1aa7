"""
Tests for app/core/rate_limiter.py - Rate limiting functionality.
"""
import json

import pytest
from unittest.mock import MagicMock, patch


class TestGetRealClientIP:
    """Test real client IP extraction."""

    def test_extracts_from_x_forwarded_for(self):
        """Should extract first IP from X-Forwarded-For header."""
        from app.core.rate_limiter import get_real_client_ip

        mock_request = MagicMock()
        mock_request.headers = {"X-Forwarded-For": "203.0.113.1, 198.51.100.1, 192.0.2.1"}

        assert get_real_client_ip(mock_request) == "203.0.113.1"

    def test_extracts_from_x_real_ip(self):
        """Should extract from X-Real-IP if X-Forwarded-For not present."""
        from app.core.rate_limiter import get_real_client_ip

        mock_request = MagicMock()
        mock_request.headers = {"X-Real-IP": " 203.0.113.2 "}

        assert get_real_client_ip(mock_request) == "203.0.113.2"

    def test_falls_back_to_direct_ip(self):
        """Should fall back to direct connection IP."""
        from app.core.rate_limiter import get_real_client_ip

        mock_request = MagicMock()
        mock_request.headers = {}

        with patch('app.core.rate_limiter.get_remote_address', return_value="192.168.1.100"):
            assert get_real_client_ip(mock_request) == "192.168.1.100"


class TestRateLimitExceededHandler:
    """Test the 429 response envelope."""

    def test_envelope_and_retry_after(self):
        from app.core.rate_limiter import rate_limit_exceeded_handler

        request = MagicMock()
        request.headers = {"X-Forwarded-For": "203.0.113.1"}
        request.method = "POST"
        request.url.path = "/api/sso"
        exc = MagicMock()
        exc.retry_after = 30

        response = rate_limit_exceeded_handler(request, exc)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "30"
        body = json.loads(response.body)
        assert body["success"] is False
        assert body["error"] == "RATE_LIMITED"
        assert "30 seconds" in body["message"]

    def test_default_retry_after(self):
        from app.core.rate_limiter import rate_limit_exceeded_handler

        request = MagicMock()
        request.headers = {}
        exc = Exception("limit")

        with patch('app.core.rate_limiter.get_remote_address', return_value="10.0.0.1"):
            response = rate_limit_exceeded_handler(request, exc)

        assert response.headers["Retry-After"] == "60"


class TestLimiterConfiguration:

    def test_limiter_disabled_by_setting(self):
        """RATE_LIMIT_ENABLED=false (as in this test run) turns the limiter off."""
        from app.core.rate_limiter import limiter

        assert limiter.enabled is False
