"""Health-gated deployment of containerized stacks.

Modules:
    services      Frozen stack and service registries
    config        Environment resolution and validation → DeploymentConfig
    plan          Mode filtering and dependency ordering → DeploymentPlan
    runner        External command boundary (subprocess)
    compose       Compose CLI wrapper and compose file generation
    health        Bounded health polling
    replication   Probe write/read-back across replicas
    results       DeploymentResult and its state machine
    orchestrator  build → activate → await health → verify → report
    operations    init, status, backup, benchmark, logs, stop

Quick start::

    from pathlib import Path
    from stackpilot.deploy import DeploymentOrchestrator, prepare_deployment

    config, plan = prepare_deployment("redis-replication", "sentinel", project_dir=Path("."))
    result = DeploymentOrchestrator(config, plan).run()
    print(result.state, result.exit_code)
"""

from stackpilot.deploy.config import DeploymentConfig, DeploymentMode, validate_configuration
from stackpilot.deploy.orchestrator import DeploymentOrchestrator, prepare_deployment, preflight, teardown
from stackpilot.deploy.plan import DeploymentPlan, build_plan
from stackpilot.deploy.results import DeploymentResult, DeploymentState
from stackpilot.deploy.services import STACKS, get_stack

__all__ = [
    "STACKS",
    "DeploymentConfig",
    "DeploymentMode",
    "DeploymentOrchestrator",
    "DeploymentPlan",
    "DeploymentResult",
    "DeploymentState",
    "build_plan",
    "get_stack",
    "preflight",
    "prepare_deployment",
    "teardown",
    "validate_configuration",
]
