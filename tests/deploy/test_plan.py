"""Tests for stack registries and deployment plans."""

from __future__ import annotations

import pytest

from stackpilot.core.errors import ConfigError
from stackpilot.deploy.config import DeploymentMode
from stackpilot.deploy.plan import build_plan
from stackpilot.deploy.services import (
    DISCOURSE,
    REDIS,
    REDIS_REPLICATION,
    STACKS,
    HealthProbe,
    ServiceRole,
    ServiceSpec,
    StackSpec,
    get_stack,
)


def _stack(*services: ServiceSpec) -> StackSpec:
    return StackSpec(name="toy", title="Toy", services=list(services), compose_file="c.yml", env_file=".env")


def _svc(name: str, *deps: str, role: ServiceRole = ServiceRole.BACKING, profiles=None) -> ServiceSpec:
    return ServiceSpec(
        name=name,
        role=role,
        image="img",
        port=1000,
        depends_on=list(deps),
        profiles=list(profiles or []),
    )


class TestRegistry:
    def test_all_stacks_registered(self):
        assert set(STACKS) == {"redis", "redis-replication", "discourse"}

    def test_lookup_case_insensitive(self):
        assert get_stack("Redis") is REDIS

    def test_unknown_stack(self):
        with pytest.raises(ValueError, match="Unknown stack"):
            get_stack("mongodb")

    def test_replication_ports(self):
        ports = {s.name: s.port for s in REDIS_REPLICATION.services}
        assert ports["redis-master"] == 6379
        assert ports["redis-replica-1"] == 6380
        assert ports["redis-replica-2"] == 6381
        assert [ports[f"redis-sentinel-{i}"] for i in (1, 2, 3)] == [26379, 26380, 26381]
        assert ports["redis-exporter"] == 9121
        haproxy = REDIS_REPLICATION.service("haproxy")
        assert haproxy.port == 6382
        assert sorted(haproxy.extra_ports.values()) == [6383, 8404]

    def test_replication_uses_ping_probe(self):
        for name in ("redis-master", "redis-replica-1", "redis-replica-2"):
            assert REDIS_REPLICATION.service(name).health is HealthProbe.PING

    def test_discourse_roles(self):
        backing = [s.name for s in DISCOURSE.services if s.role is ServiceRole.BACKING]
        assert backing == ["postgres", "redis"]
        assert DISCOURSE.primary.name == "discourse"
        assert DISCOURSE.primary.health is HealthProbe.COMPOSE

    def test_stack_profiles(self):
        assert REDIS.profiles == ["sentinel", "monitoring"]
        assert set(REDIS_REPLICATION.profiles) == {"sentinel", "monitoring", "loadbalancer"}

    def test_unknown_service(self):
        with pytest.raises(ValueError, match="Unknown service"):
            REDIS.service("memcached")

    def test_specs_are_frozen(self):
        with pytest.raises(AttributeError):
            REDIS.name = "other"  # type: ignore[misc]


class TestBuildPlan:
    def test_replication_basic(self):
        plan = build_plan("redis-replication", "basic")
        assert plan.service_names == ("redis-master", "redis-replica-1", "redis-replica-2")
        assert plan.primary.name == "redis-master"
        assert [s.name for s in plan.secondaries] == ["redis-replica-1", "redis-replica-2"]

    def test_replication_sentinel(self):
        plan = build_plan(REDIS_REPLICATION, DeploymentMode.SENTINEL)
        assert plan.service_names == (
            "redis-master",
            "redis-replica-1",
            "redis-replica-2",
            "redis-sentinel-1",
            "redis-sentinel-2",
            "redis-sentinel-3",
        )

    def test_full_mode_orders_by_tier(self):
        plan = build_plan(REDIS_REPLICATION, DeploymentMode.FULL)
        tiers = [s.role.tier for s in plan.services]
        assert tiers == sorted(tiers)
        assert plan.service_names[-1] == "haproxy"
        assert len(plan) == 8

    def test_redis_modes(self):
        assert build_plan(REDIS, "basic").service_names == ("redis",)
        assert build_plan(REDIS, "sentinel").service_names == ("redis", "redis-sentinel")
        assert build_plan(REDIS, "monitoring").service_names == ("redis", "redis-exporter")

    def test_discourse_backing_first(self):
        assert build_plan(DISCOURSE).service_names == ("postgres", "redis", "discourse")

    def test_profiles_for(self):
        plan = build_plan(REDIS_REPLICATION, DeploymentMode.FULL)
        assert plan.profiles_for(REDIS_REPLICATION.service("haproxy")) == ["loadbalancer"]
        assert plan.profiles_for(REDIS_REPLICATION.service("redis-master")) == []

    def test_dependency_beats_declaration_order(self):
        stack = _stack(_svc("app", "db"), _svc("db"))
        assert build_plan(stack).service_names == ("db", "app")

    def test_stable_for_independent_services(self):
        stack = _stack(_svc("c"), _svc("a"), _svc("b"))
        assert build_plan(stack).service_names == ("c", "a", "b")

    def test_independent_services_ordered_by_tier(self):
        stack = _stack(
            _svc("proxy", role=ServiceRole.LOADBALANCER),
            _svc("sentinel", role=ServiceRole.MONITOR),
            _svc("store", role=ServiceRole.PRIMARY),
        )
        assert build_plan(stack).service_names == ("store", "sentinel", "proxy")

    def test_tier_ties_keep_declaration_order(self):
        stack = _stack(
            _svc("exporter", role=ServiceRole.MONITOR),
            _svc("replica", role=ServiceRole.SECONDARY),
            _svc("watcher", role=ServiceRole.MONITOR),
            _svc("store", role=ServiceRole.PRIMARY),
        )
        assert build_plan(stack).service_names == ("replica", "store", "exporter", "watcher")

    def test_cycle_detected(self):
        stack = _stack(_svc("a", "b"), _svc("b", "a"), _svc("c"))
        with pytest.raises(ConfigError, match="cycle"):
            build_plan(stack)

    def test_dependency_on_inactive_service(self):
        stack = _stack(_svc("mon", profiles=["sentinel"]), _svc("lb", "mon", profiles=["monitoring"]))
        with pytest.raises(ConfigError, match="not active"):
            build_plan(stack, DeploymentMode.MONITORING)

    def test_dependency_on_unknown_service(self):
        with pytest.raises(ConfigError, match="unknown service"):
            build_plan(_stack(_svc("a", "ghost")))

    def test_plan_is_immutable(self):
        plan = build_plan(REDIS)
        with pytest.raises(AttributeError):
            plan.services = ()  # type: ignore[misc]
