"""Scope model, stores and the records they hold."""

from varsync.core.audit import AuditEvent, AuditSink, JsonlAuditSink, NullAuditSink
from varsync.core.local import LocalStore
from varsync.core.remote import FileRemoteStore, RemoteStore
from varsync.core.scope import (
    Scope,
    ServiceScope,
    SharedScope,
    format_scope,
    merge_for_service,
    parse_scope,
    require_scope,
)
from varsync.core.variables import (
    LocalOverrideSet,
    MaskOptions,
    Variable,
    VariableId,
    VariableInput,
    mask_value,
)
from varsync.core.versions import VersionEntry, VersionStore

__all__ = [
    "AuditEvent",
    "AuditSink",
    "FileRemoteStore",
    "JsonlAuditSink",
    "LocalOverrideSet",
    "LocalStore",
    "MaskOptions",
    "NullAuditSink",
    "RemoteStore",
    "Scope",
    "ServiceScope",
    "SharedScope",
    "Variable",
    "VariableId",
    "VariableInput",
    "VersionEntry",
    "VersionStore",
    "format_scope",
    "mask_value",
    "merge_for_service",
    "parse_scope",
    "require_scope",
]
