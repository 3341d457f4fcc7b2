"""Directory of authenticated principals known to the engine."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Protocol

import yaml

from ..contracts import Principal
from ..exceptions import NotFoundError


class UserDirectory(Protocol):
    """Resolves user ids supplied by the auth layer to principals."""

    def get(self, user_id: str) -> Principal:
        """Return the principal or raise ``NotFoundError``."""


class InMemoryUserDirectory:
    """Principals held in a local dictionary.

    Useful for tests and the CLI; production deployments plug in a
    directory backed by their identity provider.
    """

    def __init__(self, principals: Iterable[Principal] = ()) -> None:
        self._principals: Dict[str, Principal] = {p.id: p for p in principals}

    def add(self, principal: Principal) -> None:
        self._principals[principal.id] = principal

    def get(self, user_id: str) -> Principal:
        principal = self._principals.get(user_id)
        if principal is None:
            raise NotFoundError("User", user_id)
        return principal

    def list(self) -> List[Principal]:
        return list(self._principals.values())

    @classmethod
    def from_yaml(cls, path: str | Path) -> "InMemoryUserDirectory":
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        raw = data.get("users", []) if isinstance(data, dict) else data
        return cls(Principal.model_validate(item) for item in raw)
