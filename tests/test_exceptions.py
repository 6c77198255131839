"""
Tests for exception classes.

Covers all exception types and their string representations.
"""

import pytest

from reconciler.config import ConfigurationError
from reconciler.exceptions import (
    AccountCreationError,
    ChannelClosedError,
    MissingAccountError,
    ReconcilerError,
    ServiceHTTPError,
)


class TestReconcilerError:
    """Tests for base ReconcilerError."""

    def test_reconciler_error_is_exception(self):
        """ReconcilerError is a subclass of Exception."""
        assert issubclass(ReconcilerError, Exception)

    def test_reconciler_error_can_be_raised(self):
        """ReconcilerError can be raised and caught."""
        with pytest.raises(ReconcilerError):
            raise ReconcilerError("test error")


class TestServiceHTTPError:
    """Tests for ServiceHTTPError."""

    def test_attributes(self):
        """Exception has status_code and error attributes."""
        exc = ServiceHTTPError(400, "expired_token")
        assert exc.status_code == 400
        assert exc.error == "expired_token"

    def test_message_format(self):
        """Exception message includes status and error code."""
        exc = ServiceHTTPError(400, "expired_token")
        assert "400" in str(exc)
        assert "expired_token" in str(exc)

    def test_without_error_body(self):
        """Error defaults to None."""
        exc = ServiceHTTPError(502)
        assert exc.error is None
        assert "no error body" in str(exc)

    def test_is_reconciler_error(self):
        assert issubclass(ServiceHTTPError, ReconcilerError)


class TestAccountCreationError:
    """Tests for AccountCreationError."""

    def test_message_format(self):
        exc = AccountCreationError("empty auth token")
        assert exc.message == "empty auth token"
        assert "Account creation failed" in str(exc)

    def test_is_reconciler_error(self):
        assert issubclass(AccountCreationError, ReconcilerError)


class TestMissingAccountError:
    """Tests for MissingAccountError."""

    def test_message_includes_operation(self):
        exc = MissingAccountError("purchase")
        assert exc.operation == "purchase"
        assert "purchase" in str(exc)


class TestChannelClosedError:
    """Tests for ChannelClosedError."""

    def test_message_includes_channel(self):
        exc = ChannelClosedError("current_purchase")
        assert exc.channel == "current_purchase"
        assert "current_purchase" in str(exc)

    def test_is_reconciler_error(self):
        assert issubclass(ChannelClosedError, ReconcilerError)


class TestConfigurationError:
    """Tests for ConfigurationError."""

    def test_is_not_reconciler_error(self):
        """Configuration errors stop startup and are kept out of the runtime hierarchy."""
        assert not issubclass(ConfigurationError, ReconcilerError)
