"""Ordered pool of API credentials with failover rotation."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping

from livesight.errors import CredentialsMissingError

logger = logging.getLogger("livesight.credentials")

PLACEHOLDER_CREDENTIALS = frozenset({"your_api_key_here"})
DEFAULT_ENV_PREFIX = "GEMINI_API_KEY"
MAX_NUMBERED_KEYS = 9


def is_usable_credential(value: str | None) -> bool:
    """Return True if *value* is non-empty and not a known placeholder."""
    if not value:
        return False
    stripped = value.strip()
    return bool(stripped) and stripped.lower() not in PLACEHOLDER_CREDENTIALS


class CredentialPool:
    """Ordered, deduplicated list of usable credentials.

    Empty entries and placeholder sentinels are filtered out at
    construction; duplicates keep their first position.  The pool does
    not track which credential is current: callers hold the index and
    use :meth:`rotate` to move past a failed one.

    Example:
        pool = CredentialPool(["k1", "", "your_api_key_here", "k2", "k1"])
        assert pool.size() == 2
        assert pool.rotate(1) == 0
    """

    def __init__(self, credentials: Iterable[str | None] = ()) -> None:
        seen: set[str] = set()
        self._credentials: list[str] = []
        for raw in credentials:
            if not is_usable_credential(raw):
                continue
            value = raw.strip()  # type: ignore[union-attr]
            if value in seen:
                continue
            seen.add(value)
            self._credentials.append(value)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        prefix: str = DEFAULT_ENV_PREFIX,
    ) -> CredentialPool:
        """Build a pool from ``PREFIX`` and ``PREFIX_1`` .. ``PREFIX_9``."""
        env = os.environ if environ is None else environ
        names = [prefix] + [f"{prefix}_{i}" for i in range(1, MAX_NUMBERED_KEYS + 1)]
        pool = cls(env.get(name) for name in names)
        logger.debug("Loaded %d credential(s) from %s*", pool.size(), prefix)
        return pool

    def size(self) -> int:
        return len(self._credentials)

    @property
    def is_empty(self) -> bool:
        return not self._credentials

    def get(self, index: int) -> str:
        if not 0 <= index < len(self._credentials):
            raise IndexError(f"credential index {index} out of range (size={self.size()})")
        return self._credentials[index]

    def rotate(self, index: int) -> int:
        """Return the index of the credential to try after *index* failed."""
        if not self._credentials:
            raise CredentialsMissingError()
        return (index + 1) % len(self._credentials)

    def __len__(self) -> int:
        return len(self._credentials)

    def __repr__(self) -> str:
        # Never print credential values
        return f"CredentialPool(size={self.size()})"
