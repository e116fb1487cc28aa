"""
Unit tests for validation utilities.
"""

import pytest
from dataclasses import replace

from mailwatch.errors import ConfigurationError
from mailwatch.models import PollingSettings
from mailwatch.utils.validation import validate_account, validate_interval_ms, validate_settings
from tests.mocks.factories import make_account


class TestValidateIntervalMs:
    """Tests for validate_interval_ms."""

    def test_positive_interval(self):
        assert validate_interval_ms(1) == 1
        assert validate_interval_ms(30_000) == 30_000

    @pytest.mark.parametrize("value", [0, -1, -30_000])
    def test_non_positive(self, value):
        with pytest.raises(ConfigurationError, match="positive"):
            validate_interval_ms(value)

    @pytest.mark.parametrize("value", [1.5, "1000", None, True])
    def test_not_an_integer(self, value):
        with pytest.raises(ConfigurationError, match="integer"):
            validate_interval_ms(value)


class TestValidateSettings:
    """Tests for validate_settings."""

    def test_defaults_are_valid(self):
        settings = PollingSettings()
        assert validate_settings(settings) is settings

    @pytest.mark.parametrize("field", ["interval_ms", "seen_set_capacity", "fetch_timeout_ms"])
    def test_zero_rejected(self, field):
        with pytest.raises(ConfigurationError, match=field):
            validate_settings(replace(PollingSettings(), **{field: 0}))


class TestValidateAccount:
    """Tests for validate_account."""

    def test_valid_account(self):
        account = make_account()
        assert validate_account(account) is account

    def test_not_an_account(self):
        with pytest.raises(ConfigurationError):
            validate_account({"id": "user@example.com"})

    def test_blank_identifier(self):
        account = replace(make_account(), account_id="   ")
        with pytest.raises(ConfigurationError, match="identifier"):
            validate_account(account)

    @pytest.mark.parametrize("field", ["host", "username", "credential_ref"])
    def test_missing_connection_field(self, field):
        account = make_account()
        account = replace(account, connection=replace(account.connection, **{field: ""}))
        with pytest.raises(ConfigurationError, match="connection parameters"):
            validate_account(account)

    def test_unknown_provider(self):
        account = make_account()
        account = replace(account, connection=replace(account.connection, provider="pop3"))
        with pytest.raises(ConfigurationError, match="pop3"):
            validate_account(account)

    @pytest.mark.parametrize("port", [0, 70000, -1])
    def test_port_out_of_range(self, port):
        account = make_account()
        account = replace(account, connection=replace(account.connection, port=port))
        with pytest.raises(ConfigurationError, match="port"):
            validate_account(account)

    def test_imap_mailbox_required(self):
        account = make_account()
        account = replace(account, connection=replace(account.connection, mailbox=" "))
        with pytest.raises(ConfigurationError, match="mailbox"):
            validate_account(account)

    def test_gmail_ignores_mailbox(self):
        account = make_account()
        account = replace(account, connection=replace(account.connection, provider="gmail", mailbox=""))
        assert validate_account(account) is account

    def test_invalid_settings(self):
        with pytest.raises(ConfigurationError, match="seen_set_capacity"):
            validate_account(make_account(seen_set_capacity=0))
