"""Unit tests for the signed authentication cookie."""

import pytest

from guest_payment.domain.context import ResponseDirectives
from guest_payment.domain.exceptions import ConfigurationError
from guest_payment.infrastructure.session_auth import (
    SESSION_LOGIN_SECONDS,
    SignedCookieAuth,
    sign_auth_value,
    verify_auth_value,
)

SECRET = "secret"
NOW = 1_700_000_000


class TestAuthValue:
    def test_valid_value_returns_user(self):
        value = sign_auth_value(SECRET, 10, NOW + 60)

        assert verify_auth_value(SECRET, value, NOW) == 10

    def test_expired_value_is_rejected(self):
        value = sign_auth_value(SECRET, 10, NOW - 1)

        assert verify_auth_value(SECRET, value, NOW) is None

    def test_wrong_secret_is_rejected(self):
        value = sign_auth_value("other", 10, NOW + 60)

        assert verify_auth_value(SECRET, value, NOW) is None

    def test_tampered_user_is_rejected(self):
        _, expires, signature = sign_auth_value(SECRET, 10, NOW + 60).split(":")

        assert verify_auth_value(SECRET, f"1:{expires}:{signature}", NOW) is None

    @pytest.mark.parametrize("value", ["", "garbage", "a:b:c", "10:1:2:3"])
    def test_malformed_value_is_rejected(self, value):
        assert verify_auth_value(SECRET, value, NOW) is None


class TestSignedCookieAuth:
    """Tests for request-scoped authentication state."""

    def make_auth(self, settings, cookies=None) -> tuple[SignedCookieAuth, ResponseDirectives]:
        response = ResponseDirectives()
        return SignedCookieAuth(cookies or {}, response, settings, clock=lambda: NOW), response

    def test_reads_user_from_cookie(self, settings):
        cookies = {settings.auth_cookie_name: sign_auth_value(settings.auth_secret_key, 10, NOW + 60)}

        auth, _ = self.make_auth(settings, cookies)

        assert auth.get_current_user_id() == 10

    def test_anonymous_without_cookie(self, settings):
        auth, _ = self.make_auth(settings)

        assert auth.get_current_user_id() is None

    def test_persistent_login(self, settings):
        auth, response = self.make_auth(settings)

        auth.authenticate_as(1, persistent=True)

        cookie = response.final(settings.auth_cookie_name)
        assert auth.get_current_user_id() == 1
        assert cookie.max_age == settings.auth_cookie_max_age_seconds
        assert verify_auth_value(settings.auth_secret_key, cookie.value, NOW) == 1

    def test_session_login_is_a_session_cookie(self, settings):
        auth, response = self.make_auth(settings)

        auth.authenticate_as(10, persistent=False)

        cookie = response.final(settings.auth_cookie_name)
        assert cookie.max_age is None
        assert verify_auth_value(settings.auth_secret_key, cookie.value, NOW + SESSION_LOGIN_SECONDS - 1) == 10

    def test_clear_authentication(self, settings):
        cookies = {settings.auth_cookie_name: sign_auth_value(settings.auth_secret_key, 10, NOW + 60)}
        auth, response = self.make_auth(settings, cookies)

        auth.clear_authentication()

        assert auth.get_current_user_id() is None
        assert response.final(settings.auth_cookie_name).delete

    def test_missing_secret_raises_configuration_error(self, settings):
        settings.auth_secret_key = ""

        with pytest.raises(ConfigurationError):
            self.make_auth(settings)
