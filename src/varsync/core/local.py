"""Local override store.

Plain-text override files owned by the workstation or CI job. They are never
synchronized automatically; only an explicit pull/push/merge plan moves
values between them and the remote store.

Layout under the local directory::

    configs.env                    # shared, plain
    secrets.env                    # shared, sensitive
    services/<name>/configs.env    # service, plain
    services/<name>/secrets.env    # service, sensitive

``set_one``/``delete_one`` are read-merge-write cycles without locking: the
local directory is assumed to have a single writer (last writer wins).
"""

from __future__ import annotations

import contextlib
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from varsync.core.envfile import read_env_file, render_env
from varsync.core.scope import (
    ServiceScope,
    SharedScope,
    is_shared,
    merge_for_service,
    parse_scope,
)
from varsync.core.storage import write_atomic
from varsync.core.variables import LocalOverrideSet, validate_key
from varsync.errors import ValidationError

if TYPE_CHECKING:
    from varsync.core.scope import Scope

logger = logging.getLogger(__name__)

CONFIGS_FILE = "configs.env"
SECRETS_FILE = "secrets.env"
SERVICES_DIR = "services"
LOCAL_FILE_MODE = 0o600


class LocalStore:
    """Loads and saves per-scope override files under *root*."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def scope_dir(self, scope: Scope) -> Path:
        if isinstance(scope, SharedScope):
            return self._root
        return self._root / SERVICES_DIR / scope.name

    def config_path(self, scope: Scope) -> Path:
        return self.scope_dir(scope) / CONFIGS_FILE

    def secrets_path(self, scope: Scope) -> Path:
        return self.scope_dir(scope) / SECRETS_FILE

    # ------------------------------------------------------------------
    # Whole-scope operations
    # ------------------------------------------------------------------

    def load(self, scope: Scope) -> LocalOverrideSet:
        """Read both buckets of *scope*; missing files are empty buckets."""
        overrides = LocalOverrideSet(
            config=read_env_file(self.config_path(scope)),
            secret=read_env_file(self.secrets_path(scope)),
        )
        logger.debug(
            "Loaded %s: %d config, %d secret",
            scope,
            len(overrides.config),
            len(overrides.secret),
        )
        return overrides

    def save(self, scope: Scope, overrides: LocalOverrideSet) -> None:
        """Write both buckets of *scope* deterministically.

        An empty bucket removes its file rather than leaving an empty one.
        """
        self._write_bucket(self.config_path(scope), overrides.config)
        self._write_bucket(self.secrets_path(scope), overrides.secret)

    def reset(self, scope: Scope) -> None:
        """Remove all overrides of *scope* (and an empty service directory)."""
        self.save(scope, LocalOverrideSet())
        if isinstance(scope, ServiceScope):
            with contextlib.suppress(OSError):
                self.scope_dir(scope).rmdir()

    @staticmethod
    def _write_bucket(path: Path, values: dict[str, str]) -> None:
        if not values:
            with contextlib.suppress(FileNotFoundError):
                path.unlink()
            return
        write_atomic(path, render_env(values), mode=LOCAL_FILE_MODE)

    # ------------------------------------------------------------------
    # Single-key operations
    # ------------------------------------------------------------------

    def set_one(self, scope: Scope, key: str, value: str, *, sensitive: bool = False) -> None:
        """Set *key* in the bucket matching *sensitive*, removing it from the other."""
        errors = validate_key(key)
        if errors:
            raise ValidationError(errors)
        self.scope_dir(scope).mkdir(parents=True, exist_ok=True)

        overrides = self.load(scope)
        if sensitive:
            overrides.secret[key] = value
            overrides.config.pop(key, None)
        else:
            overrides.config[key] = value
            overrides.secret.pop(key, None)
        self.save(scope, overrides)
        logger.debug("Set %s in %s (sensitive=%s)", key, scope, sensitive)

    def delete_one(self, scope: Scope, key: str) -> bool:
        """Delete *key* from both buckets. Returns False if it was not present."""
        self.scope_dir(scope).mkdir(parents=True, exist_ok=True)

        overrides = self.load(scope)
        removed_config = overrides.config.pop(key, None) is not None
        removed_secret = overrides.secret.pop(key, None) is not None
        if not (removed_config or removed_secret):
            return False
        self.save(scope, overrides)
        logger.debug("Deleted %s from %s", key, scope)
        return True

    def move_one(self, key: str, source: Scope, target: Scope, *, overwrite: bool = True) -> None:
        """Move *key* from *source* to *target*, keeping its bucket.

        The target is written before the source is touched, so a failed write
        leaves the source intact.

        Raises:
            ValidationError: *key* is not set in *source*, *source* and
                *target* are the same scope, or *target* already has *key*
                and *overwrite* is off.
        """
        if source == target:
            raise ValidationError([f"Cannot move {key}: source and target are both {source}"])
        current = self.load(source)
        if key in current.secret:
            value, sensitive = current.secret[key], True
        elif key in current.config:
            value, sensitive = current.config[key], False
        else:
            raise ValidationError([f"Variable {key!r} not found in {source}"])

        existing = self.load(target)
        if not overwrite and (key in existing.config or key in existing.secret):
            raise ValidationError([f"Variable {key!r} already exists in {target}"])

        self.set_one(target, key, value, sensitive=sensitive)
        self.delete_one(source, key)
        logger.debug("Moved %s from %s to %s", key, source, target)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def list_services(self) -> list[str]:
        """Service names that have a local directory, sorted."""
        services_dir = self._root / SERVICES_DIR
        if not services_dir.is_dir():
            return []
        names = []
        for entry in services_dir.iterdir():
            if not entry.is_dir():
                continue
            scope = parse_scope(entry.name)
            if scope is None or is_shared(scope):
                logger.warning("Ignoring local directory with invalid service name: %s", entry)
                continue
            names.append(entry.name)
        return sorted(names)

    def materialize(self, scope: Scope, *, inherit: bool = True) -> dict[str, str]:
        """Effective local values for *scope*.

        For a service with *inherit*, shared overrides are layered under the
        service's own overrides.
        """
        own = self.load(scope).merged()
        if isinstance(scope, SharedScope):
            return own
        return merge_for_service(self.load(SharedScope()).merged(), own, inherit)
