# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for Credentials."""

import dataclasses

import pytest

from s3lite.credentials import Credentials


class TestCredentials:
    """Tests for the Credentials value."""

    def test_strips_newlines(self) -> None:
        creds = Credentials("AKIA\n", "secret\n")
        assert creds.access_key == "AKIA"
        assert creds.secret_key == "secret"

    def test_secrets_not_in_repr(self) -> None:
        creds = Credentials("AKIA", "s3cr3t", "t0ken")
        text = repr(creds)
        assert "AKIA" in text
        assert "s3cr3t" not in text
        assert "t0ken" not in text

    def test_anonymous(self) -> None:
        assert Credentials.anonymous().is_anonymous
        assert Credentials("AKIA", "").is_anonymous
        assert not Credentials("AKIA", "secret").is_anonymous

    def test_immutable(self) -> None:
        creds = Credentials("AKIA", "secret")
        with pytest.raises(dataclasses.FrozenInstanceError):
            creds.access_key = "other"  # type: ignore[misc]
