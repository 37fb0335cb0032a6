"""Tests for CredentialPool."""

from __future__ import annotations

import pytest

from livesight.credentials import CredentialPool, is_usable_credential
from livesight.errors import CredentialsMissingError

# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestCredentialPoolConstruction:
    def test_filters_empty_and_placeholder(self) -> None:
        pool = CredentialPool(["", None, "   ", "your_api_key_here", "k1"])
        assert pool.size() == 1
        assert pool.get(0) == "k1"

    def test_placeholder_is_case_insensitive(self) -> None:
        assert not is_usable_credential("YOUR_API_KEY_HERE")

    def test_deduplicates_preserving_order(self) -> None:
        pool = CredentialPool(["k2", "k1", "k2", " k1 "])
        assert [pool.get(i) for i in range(pool.size())] == ["k2", "k1"]

    def test_empty_pool(self) -> None:
        pool = CredentialPool([])
        assert pool.is_empty
        assert len(pool) == 0

    def test_repr_hides_values(self) -> None:
        pool = CredentialPool(["secret-key"])
        assert "secret-key" not in repr(pool)


# ---------------------------------------------------------------------------
# Rotation
# ---------------------------------------------------------------------------


class TestCredentialPoolRotation:
    def test_rotate_wraps(self) -> None:
        pool = CredentialPool(["a", "b", "c"])
        assert pool.rotate(0) == 1
        assert pool.rotate(1) == 2
        assert pool.rotate(2) == 0

    def test_rotate_single(self) -> None:
        assert CredentialPool(["a"]).rotate(0) == 0

    def test_rotate_empty_raises(self) -> None:
        with pytest.raises(CredentialsMissingError):
            CredentialPool([]).rotate(0)

    def test_get_out_of_range(self) -> None:
        with pytest.raises(IndexError):
            CredentialPool(["a"]).get(1)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


class TestCredentialPoolFromEnv:
    def test_reads_base_then_numbered(self) -> None:
        env = {
            "GEMINI_API_KEY_2": "k2",
            "GEMINI_API_KEY": "k0",
            "GEMINI_API_KEY_1": "k1",
            "GEMINI_API_KEY_4": "your_api_key_here",
        }
        pool = CredentialPool.from_env(env)
        assert [pool.get(i) for i in range(pool.size())] == ["k0", "k1", "k2"]

    def test_custom_prefix(self) -> None:
        pool = CredentialPool.from_env({"VITE_KEY_1": "a", "VITE_KEY_3": "c"}, prefix="VITE_KEY")
        assert pool.size() == 2

    def test_nothing_configured(self) -> None:
        assert CredentialPool.from_env({}).is_empty
