"""Scope model: the ``shared`` / ``service:<name>`` identity space.

Scope strings are parsed once at the boundary into a closed variant and
compared as values afterwards; nothing downstream re-stringifies a scope to
compare it.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Annotated, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, field_validator

if TYPE_CHECKING:
    from collections.abc import Mapping

SHARED = "shared"
SERVICE_PREFIX = "service"

_SERVICE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def _valid_service_name(name: str) -> bool:
    return bool(_SERVICE_NAME.match(name)) and name.lower() != SHARED


class SharedScope(BaseModel):
    """Variables visible to every service of a project+environment."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["shared"] = "shared"

    def __str__(self) -> str:
        return format_scope(self)


class ServiceScope(BaseModel):
    """Variables owned by a single service."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["service"] = "service"
    name: str

    @field_validator("name")
    @classmethod
    def _check_name(cls, v: str) -> str:
        if not _valid_service_name(v):
            raise ValueError(f"Invalid service name: {v!r}")
        return v

    def __str__(self) -> str:
        return format_scope(self)


Scope = Annotated[SharedScope | ServiceScope, Discriminator("kind")]


def parse_scope(raw: str | None) -> SharedScope | ServiceScope | None:
    """Parse ``"shared"``, ``"service:<name>"`` or a bare service name.

    Returns ``None`` for anything malformed or ambiguous (empty input, more
    than one ``:``, an unknown prefix, an empty or reserved name). Callers turn
    ``None`` into a validation error; nothing here guesses intent.
    """
    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    if text == SHARED:
        return SharedScope()

    parts = text.split(":")
    if len(parts) > 2:
        return None
    if len(parts) == 2:
        prefix, name = parts
        if prefix != SERVICE_PREFIX:
            return None
    else:
        name = parts[0]

    if not _valid_service_name(name):
        return None
    return ServiceScope(name=name)


def format_scope(scope: SharedScope | ServiceScope) -> str:
    """Left inverse of :func:`parse_scope`."""
    if isinstance(scope, SharedScope):
        return SHARED
    return f"{SERVICE_PREFIX}:{scope.name}"


def require_scope(raw: str | None) -> SharedScope | ServiceScope:
    """Parse *raw* or raise :class:`~varsync.errors.ValidationError`."""
    from varsync.errors import ValidationError

    scope = parse_scope(raw)
    if scope is None:
        raise ValidationError(
            [f"Invalid scope {raw!r}: expected 'shared', 'service:<name>' or a service name"]
        )
    return scope


def service_name(scope: SharedScope | ServiceScope) -> str | None:
    """Return the service name, or ``None`` for the shared scope."""
    if isinstance(scope, ServiceScope):
        return scope.name
    return None


def is_shared(scope: SharedScope | ServiceScope) -> bool:
    return isinstance(scope, SharedScope)


def scope_sort_key(scope: SharedScope | ServiceScope) -> tuple[int, str]:
    """Sort shared first, then services alphabetically."""
    if isinstance(scope, SharedScope):
        return (0, "")
    return (1, scope.name)


def merge_for_service(
    shared_vars: Mapping[str, str],
    overrides: Mapping[str, str],
    inherit: bool = True,
) -> dict[str, str]:
    """Materialize the variables a service sees.

    With *inherit*, start from a copy of *shared_vars* and overlay *overrides*
    (the service value wins on collision). Without it, only *overrides*.
    """
    if not inherit:
        return dict(overrides)
    merged = dict(shared_vars)
    merged.update(overrides)
    return merged
