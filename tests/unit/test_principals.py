"""Tests for cms_vault.acl.principals — Principal, PrincipalResolver, PrincipalCache."""
from __future__ import annotations

import os

import pytest

from cms_vault.acl.principals import (
    ADMINISTRATORS,
    EVERYONE,
    SYSTEM,
    Principal,
    PrincipalCache,
    PrincipalResolver,
)
from cms_vault.errors import NotFoundError, PrincipalResolutionError


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def workgroup_resolver() -> PrincipalResolver:
    return PrincipalResolver(default_domain=None, machine_name="web01")


@pytest.fixture()
def domain_resolver() -> PrincipalResolver:
    return PrincipalResolver(default_domain="corp", machine_name="web01")


# ---------------------------------------------------------------------------
# Principal
# ---------------------------------------------------------------------------


class TestPrincipal:
    def test_matches_is_case_insensitive(self) -> None:
        assert Principal("CORP\\Alice").matches(Principal("corp\\alice"))

    def test_matches_prefers_sid(self) -> None:
        a = Principal("CORP\\alice", sid="S-1-5-21-1-2-3-1001")
        b = Principal("CORP\\renamed", sid="s-1-5-21-1-2-3-1001")
        assert a.matches(b)

    def test_different_sids_do_not_match(self) -> None:
        a = Principal("CORP\\alice", sid="S-1-5-21-1-2-3-1001")
        b = Principal("CORP\\alice", sid="S-1-5-21-1-2-3-1002")
        assert not a.matches(b)

    def test_identities_include_groups(self) -> None:
        admin = Principal("CORP\\admin").with_groups(ADMINISTRATORS)
        assert list(admin.identities()) == [admin, ADMINISTRATORS]

    def test_dict_round_trip_drops_groups(self) -> None:
        admin = Principal("CORP\\admin", sid="S-1-5-21-9").with_groups(ADMINISTRATORS)
        restored = Principal.from_dict(admin.to_dict())
        assert restored == admin
        assert restored.groups == ()

    def test_current_is_qualified(self) -> None:
        current = Principal.current(machine_name="box")
        assert "\\" in current.name
        assert any(group.matches(EVERYONE) for group in current.groups)

    def test_current_root_is_administrator(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(os, "geteuid", lambda: 0, raising=False)
        assert ADMINISTRATORS in Principal.current(machine_name="box").groups

    def test_current_without_euid_is_not_administrator(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delattr(os, "geteuid", raising=False)
        assert ADMINISTRATORS not in Principal.current(machine_name="box").groups


# ---------------------------------------------------------------------------
# PrincipalResolver
# ---------------------------------------------------------------------------


class TestResolver:
    def test_domain_qualified_name(self, workgroup_resolver: PrincipalResolver) -> None:
        assert workgroup_resolver.resolve("corp\\User1").name == "CORP\\User1"

    def test_dot_domain_means_local_machine(self, workgroup_resolver: PrincipalResolver) -> None:
        assert workgroup_resolver.resolve(".\\svc").name == "WEB01\\svc"

    def test_user_principal_name(self, workgroup_resolver: PrincipalResolver) -> None:
        assert workgroup_resolver.resolve("user1@corp.example.com").name == "CORP\\user1"

    def test_bare_name_uses_machine_without_domain(
        self, workgroup_resolver: PrincipalResolver
    ) -> None:
        assert workgroup_resolver.resolve("svc").name == "WEB01\\svc"

    def test_bare_name_uses_default_domain(self, domain_resolver: PrincipalResolver) -> None:
        assert domain_resolver.resolve("svc").name == "CORP\\svc"

    def test_sid_resolves_well_known(self, workgroup_resolver: PrincipalResolver) -> None:
        assert workgroup_resolver.resolve("S-1-5-18") is SYSTEM

    def test_unknown_sid_kept_as_is(self, workgroup_resolver: PrincipalResolver) -> None:
        principal = workgroup_resolver.resolve("s-1-5-21-1-2-3-500")
        assert principal.sid == "S-1-5-21-1-2-3-500"

    @pytest.mark.parametrize(
        "name", ["Administrators", "BUILTIN\\Administrators", "administrators"]
    )
    def test_builtin_administrators_aliases(
        self, workgroup_resolver: PrincipalResolver, name: str
    ) -> None:
        assert workgroup_resolver.resolve(name) is ADMINISTRATORS

    @pytest.mark.parametrize("name", ["SYSTEM", "NT AUTHORITY\\SYSTEM", "LocalSystem"])
    def test_system_aliases(self, workgroup_resolver: PrincipalResolver, name: str) -> None:
        assert workgroup_resolver.resolve(name) is SYSTEM

    def test_domain_group_requires_domain(self, workgroup_resolver: PrincipalResolver) -> None:
        with pytest.raises(PrincipalResolutionError, match="domain-joined"):
            workgroup_resolver.resolve("Domain Admins")

    def test_domain_group_on_joined_host(self, domain_resolver: PrincipalResolver) -> None:
        assert domain_resolver.resolve("domain admins").name == "CORP\\Domain Admins"

    @pytest.mark.parametrize(
        "name", ["PARTNER\\Domain Admins", "partner\\domain admins", "Domain Admins@partner.example"]
    )
    def test_qualified_domain_group_keeps_its_domain(
        self, domain_resolver: PrincipalResolver, name: str
    ) -> None:
        assert domain_resolver.resolve(name).name == "PARTNER\\Domain Admins"

    def test_qualified_domain_group_on_workgroup_host(
        self, workgroup_resolver: PrincipalResolver
    ) -> None:
        assert workgroup_resolver.resolve("CORP\\Domain Users").name == "CORP\\Domain Users"

    def test_local_domain_group_requires_domain(
        self, workgroup_resolver: PrincipalResolver
    ) -> None:
        with pytest.raises(PrincipalResolutionError, match="domain-joined"):
            workgroup_resolver.resolve(".\\Domain Admins")

    def test_empty_name_rejected(self, workgroup_resolver: PrincipalResolver) -> None:
        with pytest.raises(PrincipalResolutionError):
            workgroup_resolver.resolve("   ")

    def test_invalid_characters_rejected(self, workgroup_resolver: PrincipalResolver) -> None:
        with pytest.raises(PrincipalResolutionError, match="invalid characters"):
            workgroup_resolver.resolve("CORP\\bad*name")

    def test_resolution_error_is_not_found(self, workgroup_resolver: PrincipalResolver) -> None:
        with pytest.raises(NotFoundError):
            workgroup_resolver.resolve("@")

    def test_principal_passes_through(self, workgroup_resolver: PrincipalResolver) -> None:
        principal = Principal("X\\y")
        assert workgroup_resolver.resolve(principal) is principal

    def test_resolve_many_deduplicates(self, domain_resolver: PrincipalResolver) -> None:
        resolved = domain_resolver.resolve_many(["svc", "CORP\\svc", "svc@corp.local"])
        assert [p.name for p in resolved] == ["CORP\\svc"]

    def test_results_are_cached(self) -> None:
        cache = PrincipalCache()
        resolver = PrincipalResolver(machine_name="web01", cache=cache)
        resolver.resolve("CORP\\alice")
        assert len(cache) == 1
        assert resolver.cache is cache


# ---------------------------------------------------------------------------
# PrincipalCache
# ---------------------------------------------------------------------------


class TestPrincipalCache:
    def test_get_returns_fresh_entry(self) -> None:
        clock = FakeClock()
        cache = PrincipalCache(ttl_seconds=10, clock=clock)
        cache.put("k", SYSTEM)
        clock.now += 5
        assert cache.get("k") is SYSTEM

    def test_entry_expires_after_ttl(self) -> None:
        clock = FakeClock()
        cache = PrincipalCache(ttl_seconds=10, clock=clock)
        cache.put("k", SYSTEM)
        clock.now += 11
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_reset_clears_everything(self) -> None:
        cache = PrincipalCache()
        cache.put("a", SYSTEM)
        cache.put("b", ADMINISTRATORS)
        cache.reset()
        assert cache.get("a") is None
        assert len(cache) == 0
