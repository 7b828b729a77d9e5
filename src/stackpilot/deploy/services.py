"""Service and stack specifications for stackpilot.

Provides immutable registries of the deployable stacks. Each
``ServiceSpec`` carries everything needed to start, health-check and
describe one compose service; each ``StackSpec`` groups the services of
one deployment together with its configuration contract (required
variables, env file, poll policy, backup recipe).

Key Concepts:
    ServiceRole: primary, secondary, backing, monitor, loadbalancer.
        The role selects the verification step (secondaries are probed
        for replication) and the activation tier.
    HealthProbe: how readiness is observed (compose health status,
        ``redis-cli ping`` via exec, plain running state).
    ServiceSpec: Frozen dataclass, one per compose service.
    StackSpec: Frozen dataclass, one per deployable stack.
    STACKS: Registry mapping stack name → StackSpec (3 entries).

Architecture Decisions:
    - Frozen dataclasses (not Pydantic): specs are constants, not user
      input.
    - Dependencies are declared per service (``depends_on``); the plan
      derives activation order from them, not from list position.
    - Case-insensitive lookup: ``get_stack("Redis")`` works.

Related Modules:
    - :mod:`stackpilot.deploy.plan`: orders and filters services
    - :mod:`stackpilot.deploy.compose`: renders specs into compose YAML
    - :mod:`stackpilot.deploy.config`: validates the required variables

Tags:
    services, stacks, registry, redis, sentinel, discourse, specs
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ServiceRole(str, Enum):
    """Role of a service inside its stack."""

    PRIMARY = "primary"  # Writable instance / main application
    SECONDARY = "secondary"  # Read-only replica of the primary
    BACKING = "backing"  # Storage dependency of the primary (db, cache)
    MONITOR = "monitor"  # Sentinel, metrics exporter
    LOADBALANCER = "loadbalancer"  # HAProxy in front of the storage tier

    @property
    def tier(self) -> int:
        """Activation tier: storage (0) before monitors (1) before load balancers (2)."""
        if self in (ServiceRole.PRIMARY, ServiceRole.SECONDARY, ServiceRole.BACKING):
            return 0
        if self is ServiceRole.MONITOR:
            return 1
        return 2


class HealthProbe(str, Enum):
    """How a service's readiness is observed."""

    COMPOSE = "compose"  # `compose ps` reports Health == healthy
    PING = "ping"  # `redis-cli ping` inside the container answers PONG
    RUNNING = "running"  # `compose ps` reports State == running
    NONE = "none"  # not awaited


# ---------------------------------------------------------------------------
# Service specification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ServiceSpec:
    """Specification for one compose service of a stack."""

    name: str
    """Compose service name (e.g., 'redis-master')."""

    role: ServiceRole
    """Role inside the stack."""

    image: str
    """Docker image with tag, or the tag given to a locally built image."""

    port: int
    """Published host port (the service's endpoint)."""

    internal_port: int | None = None
    """Container port; defaults to ``port``."""

    label: str = ""
    """Human-readable label used in connection info."""

    url_scheme: str = "redis"
    """Scheme used when printing the endpoint URL."""

    url_path: str = ""
    """Path appended to the endpoint URL (e.g. '/metrics')."""

    extra_ports: dict[str, int] = field(default_factory=dict)
    """Additional published ports: label → port."""

    health: HealthProbe = HealthProbe.COMPOSE
    """Readiness probe."""

    healthcheck_cmd: list[str] = field(default_factory=list)
    """Container HEALTHCHECK command used when rendering compose files."""

    ping_cmd: list[str] = field(default_factory=lambda: ["redis-cli", "ping"])
    """Command executed for the PING probe."""

    ping_expect: str = "PONG"
    """Expected stdout of ``ping_cmd``."""

    auth_env: str | None = None
    """Variable holding the service password (passed as REDISCLI_AUTH)."""

    profiles: list[str] = field(default_factory=list)
    """Activation profiles; empty means always active."""

    depends_on: list[str] = field(default_factory=list)
    """Services that must be activated first."""

    required_env: list[str] = field(default_factory=list)
    """Variables this service needs when it is part of the plan."""

    build: bool = False
    """Built from the stack's Dockerfile instead of pulled."""

    command: list[str] = field(default_factory=list)
    """Container command override."""

    environment: dict[str, str] = field(default_factory=dict)
    """Container environment (``${VAR}`` references resolved by compose)."""

    volumes: dict[str, str] = field(default_factory=dict)
    """Named volume → mount path."""

    description: str = ""

    @property
    def container_port(self) -> int:
        return self.internal_port or self.port

    @property
    def endpoint(self) -> str:
        return f"localhost:{self.port}"


# ---------------------------------------------------------------------------
# Backup recipe
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DumpSpec:
    """A command run inside a service whose stdout becomes a backup file."""

    service: str
    argv: list[str]
    filename: str


@dataclass(frozen=True)
class BackupRecipe:
    """What ``backup`` does for a stack.

    Steps run in field order: pre-commands in ``service``, a settle
    delay, dumps, single-file copies out of named volumes, then whole
    volume tarballs.
    """

    service: str
    pre_commands: list[list[str]] = field(default_factory=list)
    settle_seconds: float = 0.0
    dumps: list[DumpSpec] = field(default_factory=list)
    volume_files: list[tuple[str, str]] = field(default_factory=list)
    """(volume, path inside the volume) pairs copied as-is."""
    volume_archives: list[tuple[str, str]] = field(default_factory=list)
    """(volume, archive file name) pairs tarred with gzip."""
    helper_image: str = "alpine"


# ---------------------------------------------------------------------------
# Stack specification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StackSpec:
    """Specification for a deployable stack."""

    name: str
    title: str
    services: list[ServiceSpec]
    compose_file: str
    env_file: str
    requires_env_file: bool = True
    """The env file must exist before validation (it is not generated)."""
    env_example: str = ".env.example"
    required_env: list[str] = field(default_factory=list)
    memory_vars: list[str] = field(default_factory=list)
    """Variables holding Redis-style memory sizes (512mb, 1gb)."""
    env_defaults: dict[str, dict[str, str]] = field(default_factory=dict)
    """Sections written to a generated env file: title → {key: value}."""
    profile_env: dict[str, dict[str, str]] = field(default_factory=dict)
    """Extra env sections written when a profile is activated."""
    secrets: dict[str, str] = field(default_factory=dict)
    """Variable → generator spec ('base64:32', 'hex:64')."""
    build_service: str | None = None
    poll_attempts: int = 30
    poll_interval: float = 5.0
    data_dirs: list[str] = field(default_factory=list)
    health_script: list[str] = field(default_factory=list)
    info_script: list[str] = field(default_factory=list)
    cli_cmd: list[str] = field(default_factory=list)
    shell_cmd: list[str] = field(default_factory=list)
    benchmark_cmd: list[str] = field(default_factory=list)
    access_info: list[str] = field(default_factory=list)
    """Lines printed by ``status``; ``{VAR}`` placeholders come from the env."""
    backup: BackupRecipe | None = None

    def service(self, name: str) -> ServiceSpec:
        for spec in self.services:
            if spec.name == name:
                return spec
        available = ", ".join(s.name for s in self.services)
        raise ValueError(f"Unknown service {name!r} in stack {self.name!r}. Available: {available}")

    @property
    def primary(self) -> ServiceSpec:
        for spec in self.services:
            if spec.role is ServiceRole.PRIMARY:
                return spec
        raise ValueError(f"Stack {self.name!r} has no primary service")

    @property
    def profiles(self) -> list[str]:
        """All activation profiles used by the stack, in declaration order."""
        seen: list[str] = []
        for spec in self.services:
            for profile in spec.profiles:
                if profile not in seen:
                    seen.append(profile)
        return seen


# ---------------------------------------------------------------------------
# Pre-defined stacks
# ---------------------------------------------------------------------------

_REDIS_HEALTHCHECK = ["redis-cli", "-a", "$$REDIS_PASSWORD", "--no-auth-warning", "ping"]

REDIS = StackSpec(
    name="redis",
    title="Redis",
    compose_file="docker-compose.prod.yml",
    env_file=".env",
    required_env=["REDIS_PASSWORD"],
    memory_vars=["REDIS_MAXMEMORY"],
    secrets={"REDIS_PASSWORD": "base64:32"},
    build_service="redis",
    poll_attempts=30,
    poll_interval=5.0,
    data_dirs=["data/redis", "data/logs"],
    health_script=["/usr/local/bin/redis-health-check.sh"],
    info_script=["/usr/local/bin/redis-info.sh"],
    cli_cmd=["redis-cli"],
    benchmark_cmd=[
        "redis-benchmark",
        "-h", "127.0.0.1",
        "-p", "6379",
        "-t", "set,get",
        "-n", "10000",
        "-c", "50",
        "-q",
    ],
    services=[
        ServiceSpec(
            name="redis",
            role=ServiceRole.PRIMARY,
            image="redis-prod:latest",
            port=6379,
            label="Redis",
            health=HealthProbe.COMPOSE,
            healthcheck_cmd=_REDIS_HEALTHCHECK,
            auth_env="REDIS_PASSWORD",
            build=True,
            environment={
                "REDIS_PASSWORD": "${REDIS_PASSWORD}",
                "REDIS_MAXMEMORY": "${REDIS_MAXMEMORY:-1gb}",
            },
            volumes={"redis_data": "/data"},
            description="Redis server",
        ),
        ServiceSpec(
            name="redis-sentinel",
            role=ServiceRole.MONITOR,
            image="redis-prod:latest",
            port=26379,
            label="Sentinel",
            url_scheme="redis-sentinel",
            health=HealthProbe.RUNNING,
            profiles=["sentinel"],
            depends_on=["redis"],
            command=["redis-sentinel", "/etc/redis/sentinel.conf"],
            description="Redis Sentinel for automatic failover",
        ),
        ServiceSpec(
            name="redis-exporter",
            role=ServiceRole.MONITOR,
            image="oliver006/redis_exporter:latest",
            port=9121,
            label="Prometheus Metrics",
            url_scheme="http",
            url_path="/metrics",
            health=HealthProbe.RUNNING,
            profiles=["monitoring"],
            depends_on=["redis"],
            environment={
                "REDIS_ADDR": "redis://redis:6379",
                "REDIS_PASSWORD": "${REDIS_PASSWORD}",
            },
            description="Prometheus exporter",
        ),
    ],
    backup=BackupRecipe(
        service="redis",
        pre_commands=[["redis-cli", "BGSAVE"]],
        settle_seconds=5.0,
        volume_files=[("redis_data", "dump.rdb"), ("redis_data", "appendonly.aof")],
        volume_archives=[("redis_data", "redis_data.tar.gz")],
    ),
)


def _replica(index: int) -> ServiceSpec:
    return ServiceSpec(
        name=f"redis-replica-{index}",
        role=ServiceRole.SECONDARY,
        image="redis-prod:latest",
        port=6379 + index,
        internal_port=6379,
        label=f"Replica {index} (Read)",
        health=HealthProbe.PING,
        healthcheck_cmd=_REDIS_HEALTHCHECK,
        auth_env="REDIS_PASSWORD",
        depends_on=["redis-master"],
        command=[
            "redis-server",
            "--replicaof", "redis-master", "6379",
            "--masterauth", "$${REDIS_PASSWORD}",
            "--requirepass", "$${REDIS_PASSWORD}",
            "--maxmemory", "$${REDIS_REPLICA_MAXMEMORY}",
        ],
        volumes={f"redis_replica_{index}_data": "/data"},
        description=f"Read-only replica {index}",
    )


def _sentinel(index: int) -> ServiceSpec:
    return ServiceSpec(
        name=f"redis-sentinel-{index}",
        role=ServiceRole.MONITOR,
        image="redis-prod:latest",
        port=26378 + index,
        internal_port=26379,
        label=f"Sentinel {index}",
        url_scheme="redis-sentinel",
        health=HealthProbe.RUNNING,
        profiles=["sentinel"],
        depends_on=["redis-master", "redis-replica-1", "redis-replica-2"],
        required_env=["REDIS_SENTINEL_MASTER_NAME", "REDIS_SENTINEL_QUORUM"],
        command=["redis-sentinel", "/etc/redis/sentinel.conf"],
        description=f"Sentinel {index} for automatic failover",
    )


REDIS_REPLICATION = StackSpec(
    name="redis-replication",
    title="Redis Replication",
    compose_file="docker-compose.replication.yml",
    env_file=".env.replication",
    requires_env_file=False,
    required_env=["REDIS_PASSWORD"],
    memory_vars=["REDIS_MAXMEMORY", "REDIS_REPLICA_MAXMEMORY"],
    secrets={"REDIS_PASSWORD": "base64:32"},
    build_service="redis-master",
    poll_attempts=30,
    poll_interval=5.0,
    env_defaults={
        "Redis Configuration": {
            "REDIS_MAXMEMORY": "1gb",
            "REDIS_MAXMEMORY_POLICY": "allkeys-lru",
            "REDIS_REPLICA_MAXMEMORY": "512mb",
        },
        "Persistence": {
            "REDIS_AOF_ENABLED": "yes",
            "REDIS_AOF_FSYNC": "everysec",
            "REDIS_SAVE": "900 1 300 10 60 10000",
            "REDIS_REPLICA_AOF_ENABLED": "no",
        },
        "Logging": {
            "REDIS_LOGLEVEL": "notice",
        },
    },
    profile_env={
        "sentinel": {
            "REDIS_SENTINEL_MASTER_NAME": "mymaster",
            "REDIS_SENTINEL_QUORUM": "2",
            "REDIS_SENTINEL_DOWN_AFTER": "30000",
            "REDIS_SENTINEL_FAILOVER_TIMEOUT": "180000",
        },
    },
    services=[
        ServiceSpec(
            name="redis-master",
            role=ServiceRole.PRIMARY,
            image="redis-prod:latest",
            port=6379,
            label="Master (Read/Write)",
            health=HealthProbe.PING,
            healthcheck_cmd=_REDIS_HEALTHCHECK,
            auth_env="REDIS_PASSWORD",
            build=True,
            environment={
                "REDIS_PASSWORD": "${REDIS_PASSWORD}",
                "REDIS_MAXMEMORY": "${REDIS_MAXMEMORY}",
                "REDIS_MAXMEMORY_POLICY": "${REDIS_MAXMEMORY_POLICY}",
                "REDIS_AOF_ENABLED": "${REDIS_AOF_ENABLED}",
            },
            volumes={"redis_master_data": "/data"},
            description="Writable master",
        ),
        _replica(1),
        _replica(2),
        _sentinel(1),
        _sentinel(2),
        _sentinel(3),
        ServiceSpec(
            name="redis-exporter",
            role=ServiceRole.MONITOR,
            image="oliver006/redis_exporter:latest",
            port=9121,
            label="Prometheus Metrics",
            url_scheme="http",
            url_path="/metrics",
            health=HealthProbe.RUNNING,
            profiles=["monitoring"],
            depends_on=["redis-master"],
            environment={
                "REDIS_ADDR": "redis://redis-master:6379",
                "REDIS_PASSWORD": "${REDIS_PASSWORD}",
            },
            description="Prometheus exporter",
        ),
        ServiceSpec(
            name="haproxy",
            role=ServiceRole.LOADBALANCER,
            image="haproxy:2.9-alpine",
            port=6382,
            label="Write Operations",
            extra_ports={"Read Operations": 6383, "HAProxy Statistics": 8404},
            health=HealthProbe.RUNNING,
            profiles=["loadbalancer"],
            depends_on=["redis-master", "redis-replica-1", "redis-replica-2"],
            volumes={"./haproxy.cfg": "/usr/local/etc/haproxy/haproxy.cfg:ro"},
            description="Write/read load balancer",
        ),
    ],
)


DISCOURSE = StackSpec(
    name="discourse",
    title="Discourse",
    compose_file="docker-compose.prod.yml",
    env_file=".env",
    required_env=[
        "DISCOURSE_HOSTNAME",
        "DISCOURSE_SECRET_KEY_BASE",
        "POSTGRES_PASSWORD",
        "SMTP_ADDRESS",
        "SMTP_USERNAME",
        "SMTP_PASSWORD",
    ],
    secrets={
        "DISCOURSE_SECRET_KEY_BASE": "hex:64",
        "POSTGRES_PASSWORD": "base64:32",
        "ADMIN_PASSWORD": "base64:24",
    },
    build_service="discourse",
    poll_attempts=30,
    poll_interval=10.0,
    data_dirs=["data/postgres", "data/redis", "data/uploads", "data/backups", "data/logs"],
    health_script=["/usr/local/bin/health-check.sh"],
    shell_cmd=["bash"],
    access_info=[
        "URL: https://{DISCOURSE_HOSTNAME}",
        "Admin: {ADMIN_EMAIL}",
    ],
    services=[
        ServiceSpec(
            name="postgres",
            role=ServiceRole.BACKING,
            image="postgres:16-alpine",
            port=5432,
            label="PostgreSQL",
            url_scheme="postgresql",
            health=HealthProbe.COMPOSE,
            healthcheck_cmd=["pg_isready", "-U", "discourse"],
            environment={
                "POSTGRES_USER": "discourse",
                "POSTGRES_PASSWORD": "${POSTGRES_PASSWORD}",
                "POSTGRES_DB": "discourse_production",
            },
            volumes={"postgres_data": "/var/lib/postgresql/data"},
            description="Discourse database",
        ),
        ServiceSpec(
            name="redis",
            role=ServiceRole.BACKING,
            image="redis:7.4-alpine",
            port=6379,
            label="Redis",
            health=HealthProbe.COMPOSE,
            healthcheck_cmd=["redis-cli", "ping"],
            description="Discourse cache and job queue",
        ),
        ServiceSpec(
            name="discourse",
            role=ServiceRole.PRIMARY,
            image="discourse-prod:latest",
            port=3000,
            label="Discourse",
            url_scheme="http",
            health=HealthProbe.COMPOSE,
            healthcheck_cmd=["/usr/local/bin/health-check.sh"],
            build=True,
            depends_on=["postgres", "redis"],
            environment={
                "DISCOURSE_HOSTNAME": "${DISCOURSE_HOSTNAME}",
                "DISCOURSE_SECRET_KEY_BASE": "${DISCOURSE_SECRET_KEY_BASE}",
                "DISCOURSE_DB_HOST": "postgres",
                "DISCOURSE_DB_PASSWORD": "${POSTGRES_PASSWORD}",
                "DISCOURSE_REDIS_HOST": "redis",
                "DISCOURSE_SMTP_ADDRESS": "${SMTP_ADDRESS}",
                "DISCOURSE_SMTP_USER_NAME": "${SMTP_USERNAME}",
                "DISCOURSE_SMTP_PASSWORD": "${SMTP_PASSWORD}",
            },
            volumes={"discourse_uploads": "/shared/uploads"},
            description="Discourse application",
        ),
    ],
    backup=BackupRecipe(
        service="postgres",
        dumps=[
            DumpSpec(
                service="postgres",
                argv=["pg_dump", "-U", "discourse", "discourse_production"],
                filename="database.sql",
            ),
        ],
        volume_archives=[
            ("discourse_uploads", "uploads.tar.gz"),
            ("postgres_data", "postgres_data.tar.gz"),
        ],
    ),
)


# Registry of all pre-defined stacks
STACKS: dict[str, StackSpec] = {
    "redis": REDIS,
    "redis-replication": REDIS_REPLICATION,
    "discourse": DISCOURSE,
}


def get_stack(name: str) -> StackSpec:
    """Look up a stack spec by name.

    Parameters
    ----------
    name
        Stack name (case-insensitive).

    Raises
    ------
    ValueError
        If the stack name is not recognized.
    """
    key = name.lower().strip()
    if key not in STACKS:
        available = ", ".join(sorted(STACKS.keys()))
        raise ValueError(f"Unknown stack: {name!r}. Available: {available}")
    return STACKS[key]
