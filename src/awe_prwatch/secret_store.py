from __future__ import annotations

import os
from typing import Mapping, Protocol

GITHUB_TOKEN_SECRET_NAMES = ('GITHUB_TOKEN', 'github_token')


class SecretStore(Protocol):
    def list_names(self) -> list[str]:
        ...

    def reveal(self, name: str) -> str:
        ...


class EnvSecretStore:
    """Secrets read from the process environment."""

    def __init__(self, environ: Mapping[str, str] | None = None):
        self._environ = environ if environ is not None else os.environ

    def list_names(self) -> list[str]:
        return [name for name, value in self._environ.items() if str(value or '').strip()]

    def reveal(self, name: str) -> str:
        value = str(self._environ.get(name, '') or '').strip()
        if not value:
            raise KeyError(name)
        return value


class MappingSecretStore:
    def __init__(self, values: Mapping[str, str] | None = None):
        self._values = dict(values or {})

    def list_names(self) -> list[str]:
        return list(self._values.keys())

    def reveal(self, name: str) -> str:
        if name not in self._values:
            raise KeyError(name)
        return self._values[name]


def find_github_token(store: SecretStore | None) -> str | None:
    if store is None:
        return None
    names = set(store.list_names())
    for name in GITHUB_TOKEN_SECRET_NAMES:
        if name not in names:
            continue
        try:
            token = str(store.reveal(name) or '').strip()
        except KeyError:
            continue
        if token:
            return token
    return None
