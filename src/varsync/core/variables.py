"""Variable models and value masking."""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from varsync.core.scope import Scope, format_scope

_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_valid_key(key: str) -> bool:
    return bool(_KEY.match(key))


def validate_key(key: str) -> list[str]:
    """Return validation errors for a variable key (empty = valid)."""
    if not key:
        return ["Variable key is required"]
    if not is_valid_key(key):
        return [f"Invalid variable key {key!r}: expected [A-Za-z_][A-Za-z0-9_]*"]
    return []


class VariableId(BaseModel):
    """Identity of a variable: unique per (project, environment, scope, key)."""

    model_config = ConfigDict(frozen=True)

    project: str
    environment: str
    scope: Scope
    key: str

    @property
    def slug(self) -> str:
        return f"{self.project}/{self.environment}/{format_scope(self.scope)}/{self.key}"

    def __str__(self) -> str:
        return self.slug


class VariableInput(BaseModel):
    """Payload for :meth:`RemoteStore.set`."""

    key: str
    value: str
    project: str
    environment: str
    scope: Scope
    sensitive: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def id(self) -> VariableId:
        return VariableId(
            project=self.project, environment=self.environment, scope=self.scope, key=self.key
        )


class Variable(VariableInput):
    """A variable as returned by the remote store.

    ``sensitive`` only controls masking on display; encryption at rest belongs
    to the remote store.
    """


class LocalOverrideSet(BaseModel):
    """Locally held values for one scope, split into plain and sensitive buckets."""

    config: dict[str, str] = Field(default_factory=dict)
    secret: dict[str, str] = Field(default_factory=dict)

    def merged(self) -> dict[str, str]:
        """All values of the scope; a secret shadows a config of the same key."""
        return {**self.config, **self.secret}

    @property
    def sensitive_keys(self) -> set[str]:
        return set(self.secret)

    def is_empty(self) -> bool:
        return not self.config and not self.secret

    def __len__(self) -> int:
        return len(self.merged())


class MaskOptions(BaseModel):
    """How sensitive values are shown in plans, artifacts and audit events."""

    model_config = ConfigDict(frozen=True)

    visible_start: int = 4
    visible_end: int = 4
    min_length_to_mask: int = 8
    mask_char: str = "*"


def mask_value(value: str | None, options: MaskOptions | None = None) -> str | None:
    """Mask a sensitive value, keeping only its edges when it is long enough.

    >>> mask_value("supersecretpassword")
    'supe****word'
    >>> mask_value("short")
    '***'
    """
    if value is None:
        return None
    if value == "":
        return ""
    opts = options or MaskOptions()
    if len(value) < opts.min_length_to_mask:
        return opts.mask_char * 3
    start = value[: opts.visible_start]
    end = value[-opts.visible_end :] if opts.visible_end else ""
    hidden = len(value) - opts.visible_start - opts.visible_end
    return f"{start}{opts.mask_char * min(4, max(1, hidden))}{end}"
