"""Configuration models for ``varsync.yaml``."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from varsync.core.scope import ServiceScope, parse_scope
from varsync.core.variables import MaskOptions  # noqa: TC001
from varsync.engine.types import (
    DEFAULT_PROTECTED_ENVIRONMENTS,
    ConflictStrategy,
    GovernanceOptions,
    GuardrailMode,
    ReconcileOptions,
)

DEFAULT_USER = "anonymous"


class ContextConfig(BaseSettings):
    """Which project/environment commands act on, and as whom.

    Fields can be set via YAML (constructor kwargs) or environment variables
    with the ``VARSYNC_`` prefix. Constructor kwargs take precedence.
    """

    model_config = SettingsConfigDict(env_prefix="VARSYNC_")

    project: str
    environment: str = "dev"
    user: str | None = None


class ReconcileConfig(BaseModel):
    concurrency: int = Field(default=1, ge=1)
    stop_on_error: bool = False
    inherit_shared: bool = True
    prune: bool = False
    strategy: ConflictStrategy = ConflictStrategy.ERROR


def _none_to_list(v: Any) -> Any:
    return v if v is not None else []


class GovernanceConfig(BaseModel):
    value_guardrails: GuardrailMode = GuardrailMode.WARN
    required_vars: dict[str, list[str]] = Field(default_factory=dict)

    def options(self) -> GovernanceOptions:
        return GovernanceOptions(
            value_guardrails=self.value_guardrails,
            required_vars={env: tuple(keys) for env, keys in self.required_vars.items()},
        )


class Config(BaseModel):
    """Top-level ``varsync.yaml`` document."""

    context: ContextConfig
    environments: Annotated[list[str], BeforeValidator(_none_to_list)] = []
    services: Annotated[list[str], BeforeValidator(_none_to_list)] = []
    local_dir: Path = Path(".varsync/local")
    remote_path: Path = Path(".varsync/remote.json")
    versions_path: Path = Path(".varsync/versions.json")
    audit_path: Path | None = Path(".varsync/audit.jsonl")
    artifact_dir: Path = Path(".varsync/plans")
    protected_environments: Annotated[list[str], BeforeValidator(_none_to_list)] = list(
        DEFAULT_PROTECTED_ENVIRONMENTS
    )
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)
    governance: GovernanceConfig = Field(default_factory=GovernanceConfig)
    mask: MaskOptions = Field(default_factory=MaskOptions)
    config_dir: Path = Path()

    @field_validator("services")
    @classmethod
    def _check_services(cls, v: list[str]) -> list[str]:
        bad = [name for name in v if not isinstance(parse_scope(name), ServiceScope)]
        if bad:
            raise ValueError(f"Invalid service name(s): {', '.join(bad)}")
        return v

    @property
    def environment_names(self) -> list[str]:
        """Declared environments, or just the default one."""
        return self.environments or [self.context.environment]

    @property
    def user(self) -> str:
        return self.context.user or DEFAULT_USER

    def resolve(self, path: Path) -> Path:
        """Resolve *path* relative to the config file's directory."""
        return path if path.is_absolute() else self.config_dir / path

    def options(self, *, source: str = "cli") -> ReconcileOptions:
        """Build the options value threaded through plan/apply/batch calls."""
        return ReconcileOptions(
            concurrency=self.reconcile.concurrency,
            stop_on_error=self.reconcile.stop_on_error,
            inherit_shared=self.reconcile.inherit_shared,
            prune=self.reconcile.prune,
            strategy=self.reconcile.strategy,
            user=self.user,
            source=source,
            protected_environments=tuple(self.protected_environments),
            mask=self.mask,
            governance=self.governance.options(),
        )
