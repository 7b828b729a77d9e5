"""Deployment plans.

A ``DeploymentPlan`` is the ordered, immutable list of services one
invocation activates. ``build_plan`` filters the stack by the mode's
activation profiles and orders the survivors topologically over their
``depends_on`` edges (Kahn's algorithm). Among services that are ready
at the same time, storage comes before monitors and monitors before load
balancers; ties keep declaration order.

Example:
    >>> from stackpilot.deploy.plan import build_plan
    >>> plan = build_plan("redis-replication", "basic")
    >>> plan.service_names
    ('redis-master', 'redis-replica-1', 'redis-replica-2')
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

from stackpilot.core.errors import ConfigError
from stackpilot.deploy.config import DeploymentMode, is_active
from stackpilot.deploy.services import ServiceRole, ServiceSpec, StackSpec, get_stack


@dataclass(frozen=True)
class DeploymentPlan:
    """Ordered services for one deployment. Immutable once computed."""

    stack: StackSpec
    mode: DeploymentMode
    services: tuple[ServiceSpec, ...]

    @property
    def service_names(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.services)

    @property
    def profiles(self) -> frozenset[str]:
        return self.mode.profiles

    @property
    def primary(self) -> ServiceSpec:
        for spec in self.services:
            if spec.role is ServiceRole.PRIMARY:
                return spec
        raise ConfigError(f"Plan for {self.stack.name!r} has no primary service")

    @property
    def secondaries(self) -> tuple[ServiceSpec, ...]:
        return tuple(s for s in self.services if s.role is ServiceRole.SECONDARY)

    def profiles_for(self, service: ServiceSpec) -> list[str]:
        """Profiles that must be passed to compose to start *service*."""
        return sorted(self.mode.profiles.intersection(service.profiles))

    def __len__(self) -> int:
        return len(self.services)


def build_plan(stack: StackSpec | str, mode: DeploymentMode | str = DeploymentMode.BASIC) -> DeploymentPlan:
    """Select and order the services of *stack* for *mode*.

    Raises:
        ConfigError: A dependency cycle, or an active service depending
            on a service the mode does not activate.
    """
    spec = get_stack(stack) if isinstance(stack, str) else stack
    mode = DeploymentMode(mode)

    active = [s for s in spec.services if is_active(s, mode)]
    by_name = {s.name: s for s in active}
    all_names = {s.name for s in spec.services}

    for service in active:
        for dep in service.depends_on:
            if dep not in all_names:
                raise ConfigError(
                    f"Service {service.name!r} depends on unknown service {dep!r}"
                ).with_context(stack=spec.name, service=service.name)
            if dep not in by_name:
                raise ConfigError(
                    f"Service {service.name!r} depends on {dep!r}, which is not active in mode {mode.value!r}"
                ).with_context(stack=spec.name, service=service.name)

    position = {s.name: i for i, s in enumerate(active)}

    def rank(name: str) -> tuple[int, int]:
        return by_name[name].role.tier, position[name]

    in_degree = {s.name: len(set(s.depends_on)) for s in active}
    dependents: dict[str, list[str]] = {s.name: [] for s in active}
    for service in active:
        for dep in set(service.depends_on):
            dependents[dep].append(service.name)

    ready = deque(sorted((n for n, d in in_degree.items() if d == 0), key=rank))
    ordered: list[ServiceSpec] = []
    while ready:
        name = ready.popleft()
        ordered.append(by_name[name])
        released = []
        for child in dependents[name]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                released.append(child)
        # Keep the queue sorted by tier, then declaration order
        ready = deque(sorted([*ready, *released], key=rank))

    if len(ordered) != len(active):
        stuck = sorted((n for n, d in in_degree.items() if d > 0), key=position.__getitem__)
        raise ConfigError(
            f"Dependency cycle between services: {', '.join(stuck)}"
        ).with_context(stack=spec.name)

    return DeploymentPlan(stack=spec, mode=mode, services=tuple(ordered))
