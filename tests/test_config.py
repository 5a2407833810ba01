"""Unit tests for core/config.py -- the SECRET_KEY policy enforced at load time."""

import pytest
from pydantic import ValidationError

from core.config import Settings


@pytest.fixture(autouse=True)
def _no_secret_in_env(monkeypatch) -> None:
    monkeypatch.delenv("SECRET_KEY", raising=False)


class TestSecretKeyPolicy:
    def test_short_key_rejected_in_debug(self) -> None:
        with pytest.raises(ValidationError, match="at least 32 characters"):
            Settings(debug=True, secret_key="too-short")

    def test_short_key_rejected_in_production(self) -> None:
        with pytest.raises(ValidationError, match="at least 32 characters"):
            Settings(debug=False, secret_key="too-short")

    def test_missing_key_is_fatal_in_production(self) -> None:
        with pytest.raises(ValidationError, match="SECRET_KEY is required"):
            Settings(debug=False, secret_key="")

    def test_missing_key_is_generated_in_debug(self) -> None:
        first = Settings(debug=True, secret_key="")
        second = Settings(debug=True, secret_key="")
        assert len(first.secret_key) >= 32
        assert first.secret_key != second.secret_key

    def test_explicit_key_is_kept(self) -> None:
        key = "k" * 32
        assert Settings(debug=False, secret_key=key).secret_key == key
