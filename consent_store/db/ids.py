"""
Identifier generation.

The id mode is fixed for the lifetime of an adapter: either the application
generates every id (random or custom) or the database does (auto increment).
"""

from __future__ import annotations

import secrets
import string
from collections.abc import Callable, Mapping
from typing import Any

from consent_store.exceptions import IdGenerationError

ID_ALPHABET = string.ascii_letters + string.digits
DEFAULT_ID_LENGTH = 21


def generate_id(length: int = DEFAULT_ID_LENGTH) -> str:
    """Random URL-safe identifier from a cryptographically secure source."""
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


class IdStrategy:
    def __init__(self, generate: bool | Callable[[str], str] = True) -> None:
        self._generate = generate

    @property
    def database_generated(self) -> bool:
        return self._generate is False

    def new_id(self, model: str) -> str | None:
        """Id for a new row of ``model``; None when the database assigns it."""
        if self._generate is False:
            return None
        if callable(self._generate):
            return self._generate(model)
        return generate_id()

    def resolve(self, model: str, data: Mapping[str, Any]) -> Any:
        """
        Id to insert for a create payload.

        An explicit id is kept when ids are application managed. With database
        generated ids an explicit id is an error rather than silently dropped.
        """
        explicit = data.get("id")
        if explicit is None:
            return self.new_id(model)
        if self.database_generated:
            raise IdGenerationError(model)
        return explicit
