"""Configuration validation for stackpilot deployments.

Turns a flat environment mapping into a ``DeploymentConfig``: the one
explicit configuration object threaded through the plan, the
orchestrator and the operations. Validation is pure; it never runs a
command or writes a file, so a rejected configuration has no side
effects at all.

Key Concepts:
    DeploymentMode: basic, sentinel, monitoring, full. Each mode maps to
        the activation profiles it enables.
    resolve_environment: env file (or generated defaults) overlaid by
        the process environment.
    validate_configuration: required/malformed checks → DeploymentConfig
        or ConfigError listing every problem at once.

Related Modules:
    - :mod:`stackpilot.deploy.services`: required variables per stack
    - :mod:`stackpilot.deploy.plan`: consumes the mode's profiles
    - :mod:`stackpilot.core.envfile`: env file parsing

Tags:
    config, validation, pydantic, environment, deployment
"""

from __future__ import annotations

import os
import re
import uuid
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator

from stackpilot.core.envfile import parse_env_file
from stackpilot.core.errors import ConfigError
from stackpilot.core.logging import get_logger
from stackpilot.deploy.services import ServiceSpec, StackSpec, get_stack

logger = get_logger(__name__)

MEMORY_RE = re.compile(r"^[0-9]+[kmgt]?b?$", re.IGNORECASE)
HOSTNAME_RE = re.compile(
    r"^(?=.{1,253}$)(?!-)[A-Za-z0-9-]{1,63}(?<!-)(\.(?!-)[A-Za-z0-9-]{1,63}(?<!-))*$"
)
MIN_SECRET_KEY_LENGTH = 64

_SECRET_SUFFIXES = ("PASSWORD", "SECRET_KEY_BASE", "_TOKEN")


class DeploymentMode(str, Enum):
    """Which subset of a stack's services is activated."""

    BASIC = "basic"  # Storage tier only
    SENTINEL = "sentinel"  # + Sentinel failover monitors
    MONITORING = "monitoring"  # + Prometheus exporter
    FULL = "full"  # Everything, including the load balancer

    @property
    def profiles(self) -> frozenset[str]:
        return MODE_PROFILES[self]


MODE_PROFILES: dict[DeploymentMode, frozenset[str]] = {
    DeploymentMode.BASIC: frozenset(),
    DeploymentMode.SENTINEL: frozenset({"sentinel"}),
    DeploymentMode.MONITORING: frozenset({"monitoring"}),
    DeploymentMode.FULL: frozenset({"sentinel", "monitoring", "loadbalancer"}),
}

# CLI command names that select a mode for the single-instance stacks
MODE_ALIASES: dict[str, DeploymentMode] = {
    "deploy": DeploymentMode.BASIC,
    "deploy-ha": DeploymentMode.SENTINEL,
    "deploy-monitoring": DeploymentMode.MONITORING,
}


def is_active(service: ServiceSpec, mode: DeploymentMode) -> bool:
    """A service is active when it has no profile or shares one with *mode*."""
    return not service.profiles or bool(mode.profiles.intersection(service.profiles))


class DeploymentConfig(BaseModel):
    """Validated configuration for one deployment invocation.

    Immutable by convention: built once by ``validate_configuration`` and
    passed explicitly to every step.

    Example::

        config = validate_configuration(
            {"REDIS_PASSWORD": "s3cret"},
            "redis-replication",
            DeploymentMode.SENTINEL,
        )
        config.max_attempts  # 30
    """

    stack: str
    mode: DeploymentMode = DeploymentMode.BASIC
    project_dir: Path = Field(default_factory=Path.cwd)
    compose_file: str
    env_file: str
    values: dict[str, str] = Field(
        default_factory=dict,
        description="Validated stack variables",
    )

    # Health polling
    max_attempts: int = Field(default=30, ge=1)
    interval_seconds: float = Field(default=5.0, ge=0)
    log_tail: int = Field(default=50, ge=1, description="Log lines dumped on timeout")

    # Replication probe
    propagation_delay: float = Field(default=2.0, ge=0)
    probe_key: str = "test_key"
    probe_value: str = "replication_works"

    compose_command: list[str] = Field(default_factory=lambda: ["docker", "compose"])

    # Pinned build metadata; computed at build time when unset
    build_date: str | None = None
    vcs_ref: str | None = None

    warnings: list[str] = Field(default_factory=list)
    run_id: str = Field(default="", description="Unique run identifier (auto-generated)")

    @model_validator(mode="after")
    def _set_defaults(self) -> DeploymentConfig:
        if not self.run_id:
            self.run_id = uuid.uuid4().hex[:12]
        return self

    @classmethod
    def for_stack(cls, stack: StackSpec | str, **overrides: Any) -> DeploymentConfig:
        """Unvalidated config for commands that only address a stack (status, logs, cleanup)."""
        spec = get_stack(stack) if isinstance(stack, str) else stack
        params: dict[str, Any] = {
            "stack": spec.name,
            "compose_file": spec.compose_file,
            "env_file": spec.env_file,
            "max_attempts": spec.poll_attempts,
            "interval_seconds": spec.poll_interval,
        }
        params.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**params)

    @property
    def stack_spec(self) -> StackSpec:
        return get_stack(self.stack)

    @property
    def compose_path(self) -> Path:
        return self.project_dir / self.compose_file

    @property
    def env_path(self) -> Path:
        return self.project_dir / self.env_file

    def secret_values(self) -> list[str]:
        """Values that must never appear in logs or output unmasked."""
        secret_keys = set(self.stack_spec.secrets)
        return [
            value
            for key, value in self.values.items()
            if value and (key in secret_keys or key.endswith(_SECRET_SUFFIXES))
        ]


# ---------------------------------------------------------------------------
# Environment resolution
# ---------------------------------------------------------------------------


def _known_keys(stack: StackSpec) -> set[str]:
    keys = set(stack.required_env) | set(stack.memory_vars) | set(stack.secrets)
    for section in list(stack.env_defaults.values()) + list(stack.profile_env.values()):
        keys.update(section)
    for service in stack.services:
        keys.update(service.required_env)
        if service.auth_env:
            keys.add(service.auth_env)
    return keys


def resolve_environment(
    stack: StackSpec | str,
    project_dir: Path,
    mode: DeploymentMode = DeploymentMode.BASIC,
    environ: Mapping[str, str] | None = None,
    *,
    require_file: bool | None = None,
) -> dict[str, str]:
    """Return the effective variables for *stack*.

    Merge order (last wins):

    1. Generated defaults (stacks that write their own env file)
    2. The stack's env file
    3. *environ* (defaults to ``os.environ``), for keys the stack knows
       or the env file declares

    *require_file* defaults to the stack's ``requires_env_file``; pass
    ``False`` for commands that only need whatever values exist.

    Raises:
        ConfigError: The env file is required and missing.
    """
    spec = get_stack(stack) if isinstance(stack, str) else stack
    if require_file is None:
        require_file = spec.requires_env_file
    environ = os.environ if environ is None else environ
    env_path = project_dir / spec.env_file

    values: dict[str, str] = {}
    if not spec.requires_env_file:
        for section in spec.env_defaults.values():
            values.update(section)
        for profile in sorted(mode.profiles):
            values.update(spec.profile_env.get(profile, {}))

    if env_path.is_file():
        values.update(parse_env_file(env_path))
    elif require_file:
        raise ConfigError(
            f"{spec.env_file} file not found. Run 'stackpilot {spec.name} init' first",
            missing=[spec.env_file],
        ).with_context(stack=spec.name, step="resolve")

    keys = _known_keys(spec) | set(values)
    for key in keys:
        if key in environ:
            values[key] = environ[key]

    logger.debug("config.resolved", stack=spec.name, env_file=str(env_path), keys=len(values))
    return values


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def required_variables(stack: StackSpec, mode: DeploymentMode) -> list[str]:
    """Variables required by *stack* in *mode*, in declaration order."""
    required = list(stack.required_env)
    for service in stack.services:
        if is_active(service, mode):
            required.extend(v for v in service.required_env if v not in required)
    return required


def validate_configuration(
    env: Mapping[str, str],
    stack: StackSpec | str,
    mode: DeploymentMode = DeploymentMode.BASIC,
    *,
    project_dir: Path | None = None,
    **overrides: Any,
) -> DeploymentConfig:
    """Validate *env* for *stack*/*mode* and build the DeploymentConfig.

    Every missing and malformed variable is collected before raising, so
    one run reports all problems.

    Raises:
        ConfigError: with ``missing`` and/or ``malformed`` populated.
    """
    spec = get_stack(stack) if isinstance(stack, str) else stack

    missing = [var for var in required_variables(spec, mode) if not env.get(var, "").strip()]

    malformed: dict[str, str] = {}
    for var in spec.memory_vars:
        value = env.get(var, "").strip()
        if value and not MEMORY_RE.match(value):
            malformed[var] = f"invalid memory size {value!r} (expected e.g. 512mb, 1gb)"

    hostname = env.get("DISCOURSE_HOSTNAME", "").strip()
    if hostname and not HOSTNAME_RE.match(hostname):
        malformed["DISCOURSE_HOSTNAME"] = f"invalid hostname {hostname!r}"

    if missing or malformed:
        parts = []
        if missing:
            parts.append("Missing required environment variables: " + ", ".join(missing))
        if malformed:
            parts.append(
                "Malformed configuration: "
                + ", ".join(f"{var} ({reason})" for var, reason in malformed.items())
            )
        raise ConfigError("; ".join(parts), missing=missing, malformed=malformed).with_context(
            stack=spec.name, step="validate"
        )

    warnings: list[str] = []
    secret_key = env.get("DISCOURSE_SECRET_KEY_BASE", "")
    if secret_key and len(secret_key) < MIN_SECRET_KEY_LENGTH:
        warnings.append(
            f"DISCOURSE_SECRET_KEY_BASE should be at least {MIN_SECRET_KEY_LENGTH} characters long"
        )

    values = {key: str(value) for key, value in env.items()}
    params: dict[str, Any] = {
        "stack": spec.name,
        "mode": mode,
        "compose_file": spec.compose_file,
        "env_file": spec.env_file,
        "values": values,
        "max_attempts": spec.poll_attempts,
        "interval_seconds": spec.poll_interval,
        "warnings": warnings,
    }
    if project_dir is not None:
        params["project_dir"] = project_dir
    params.update({k: v for k, v in overrides.items() if v is not None})

    config = DeploymentConfig(**params)
    logger.debug(
        "config.validated",
        stack=spec.name,
        mode=mode.value,
        run_id=config.run_id,
        warnings=len(warnings),
    )
    return config
