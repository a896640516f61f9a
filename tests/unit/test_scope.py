from __future__ import annotations

import pydantic
import pytest

from varsync.core.scope import (
    ServiceScope,
    SharedScope,
    format_scope,
    is_shared,
    merge_for_service,
    parse_scope,
    require_scope,
    scope_sort_key,
    service_name,
)
from varsync.core.variables import VariableId
from varsync.errors import ValidationError


class TestParseScope:
    def test_shared(self) -> None:
        assert parse_scope("shared") == SharedScope()

    def test_prefixed_service(self) -> None:
        assert parse_scope("service:api") == ServiceScope(name="api")

    def test_bare_name_is_service(self) -> None:
        assert parse_scope("api") == ServiceScope(name="api")

    def test_whitespace_is_stripped(self) -> None:
        assert parse_scope("  service:worker-1 ") == ServiceScope(name="worker-1")

    @pytest.mark.parametrize(
        "raw",
        [
            None,
            "",
            "   ",
            "service:a:b",
            "svc:api",
            "service:",
            ":api",
            "service:shared",
            "SHARED",
            "Shared",
            "-api",
            "api/v2",
        ],
    )
    def test_rejects_malformed(self, raw: str | None) -> None:
        assert parse_scope(raw) is None

    def test_format_is_left_inverse(self) -> None:
        for scope in (SharedScope(), ServiceScope(name="api"), ServiceScope(name="a.b_c-d")):
            assert parse_scope(format_scope(scope)) == scope

    def test_format(self) -> None:
        assert format_scope(SharedScope()) == "shared"
        assert format_scope(ServiceScope(name="api")) == "service:api"
        assert str(ServiceScope(name="api")) == "service:api"

    def test_require_scope_raises(self) -> None:
        with pytest.raises(ValidationError, match="Invalid scope"):
            require_scope("a:b:c")

    def test_service_name_reserved(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            ServiceScope(name="shared")


class TestScopeHelpers:
    def test_service_name(self) -> None:
        assert service_name(SharedScope()) is None
        assert service_name(ServiceScope(name="api")) == "api"

    def test_is_shared(self) -> None:
        assert is_shared(SharedScope())
        assert not is_shared(ServiceScope(name="api"))

    def test_sort_shared_first(self) -> None:
        scopes = [ServiceScope(name="web"), SharedScope(), ServiceScope(name="api")]
        assert [format_scope(s) for s in sorted(scopes, key=scope_sort_key)] == [
            "shared",
            "service:api",
            "service:web",
        ]

    def test_scopes_are_hashable_values(self) -> None:
        assert len({ServiceScope(name="api"), ServiceScope(name="api"), SharedScope()}) == 2

    def test_variable_id_round_trips_scope(self) -> None:
        vid = VariableId(project="p", environment="dev", scope=ServiceScope(name="api"), key="K")
        loaded = VariableId.model_validate_json(vid.model_dump_json())
        assert loaded == vid
        assert loaded.slug == "p/dev/service:api/K"


class TestMergeForService:
    def test_empty_overrides_is_identity(self) -> None:
        shared = {"A": "1", "B": "2"}
        assert merge_for_service(shared, {}, True) == shared

    def test_service_wins_on_collision(self) -> None:
        merged = merge_for_service({"PORT": "80", "A": "1"}, {"PORT": "8080"}, True)
        assert merged == {"PORT": "8080", "A": "1"}

    def test_no_inherit_returns_overrides_only(self) -> None:
        assert merge_for_service({"A": "1"}, {"B": "2"}, False) == {"B": "2"}

    def test_inputs_not_mutated(self) -> None:
        shared = {"A": "1"}
        overrides = {"A": "2"}
        merged = merge_for_service(shared, overrides, True)
        merged["C"] = "3"
        assert shared == {"A": "1"}
        assert overrides == {"A": "2"}
