"""Tests for stackpilot.deploy.compose: CLI wrapper, ps parsing, YAML generation."""

from __future__ import annotations

import json

import yaml

from stackpilot.deploy.compose import (
    ComposeProject,
    generate_compose,
    map_compose_status,
    parse_ps_output,
    write_compose_file,
)
from stackpilot.deploy.services import DISCOURSE, REDIS, REDIS_REPLICATION


def _project(runner, project_dir, env_file=".env"):
    return ComposeProject(
        runner,
        project_dir=project_dir,
        compose_file="docker-compose.prod.yml",
        env_file=env_file,
    )


class TestParsePs:
    def test_json_array(self):
        text = json.dumps([{"Service": "redis", "State": "running"}, {"Service": "exporter"}])
        assert [e["Service"] for e in parse_ps_output(text)] == ["redis", "exporter"]

    def test_one_object_per_line(self):
        text = '{"Service": "redis", "State": "running"}\n\n{"Service": "sentinel", "State": "exited"}\n'
        assert [e["Service"] for e in parse_ps_output(text)] == ["redis", "sentinel"]

    def test_garbage_lines_skipped(self):
        text = 'WARN something\n{"Service": "redis"}\n'
        assert parse_ps_output(text) == [{"Service": "redis"}]

    def test_empty(self):
        assert parse_ps_output("  \n") == []


class TestMapComposeStatus:
    def test_health_wins(self):
        assert map_compose_status({"State": "running", "Health": "healthy"}) == "healthy"
        assert map_compose_status({"State": "running", "Health": "unhealthy"}) == "unhealthy"
        assert map_compose_status({"State": "running", "Health": "starting"}) == "starting"

    def test_state_only(self):
        assert map_compose_status({"State": "running", "Health": ""}) == "running"
        assert map_compose_status({"State": "exited"}) == "exited"
        assert map_compose_status({"State": "restarting"}) == "starting"
        assert map_compose_status({}) == "not_found"


class TestComposeProject:
    def test_env_file_only_when_present(self, fake_runner, project_dir):
        compose = _project(fake_runner, project_dir)
        assert "--env-file" not in compose.base_args()
        (project_dir / ".env").write_text("A=1\n")
        assert compose.base_args()[-2:] == ["--env-file", ".env"]

    def test_profiles_added(self, fake_runner, project_dir):
        compose = _project(fake_runner, project_dir)
        compose.up("redis-sentinel", ["sentinel"])
        assert fake_runner.calls[-1] == [
            "docker", "compose", "-f", "docker-compose.prod.yml",
            "--profile", "sentinel", "up", "-d", "redis-sentinel",
        ]

    def test_exec_passes_password_via_env(self, fake_runner, project_dir):
        compose = _project(fake_runner, project_dir)
        compose.exec("redis", ["redis-cli", "ping"], password="pw")
        call = fake_runner.calls[-1]
        assert call[call.index("exec"):] == ["exec", "-T", "-e", "REDISCLI_AUTH", "redis", "redis-cli", "ping"]
        assert fake_runner.envs[-1]["REDISCLI_AUTH"] == "pw"

    def test_exec_keeps_password_off_argv(self, fake_runner, project_dir):
        compose = _project(fake_runner, project_dir)
        compose.exec("redis", ["redis-cli", "INFO"], password="hunter2-secret")
        assert not any("hunter2-secret" in arg for arg in fake_runner.calls[-1])

    def test_exec_without_password_sets_no_auth(self, fake_runner, project_dir):
        compose = _project(fake_runner, project_dir)
        compose.exec("redis", ["redis-cli", "ping"])
        assert "-e" not in fake_runner.calls[-1]
        assert "REDISCLI_AUTH" not in fake_runner.envs[-1]

    def test_interactive_exec_has_tty(self, fake_runner, project_dir):
        compose = _project(fake_runner, project_dir)
        compose.exec("discourse", ["bash"], interactive=True)
        assert "-T" not in fake_runner.calls[-1]

    def test_build_args(self, fake_runner, project_dir):
        compose = _project(fake_runner, project_dir)
        compose.build("redis", {"BUILD_DATE": "2026-01-01T00:00:00Z", "VCS_REF": "abc1234"})
        assert fake_runner.calls[-1][-6:] == [
            "build",
            "--build-arg", "BUILD_DATE=2026-01-01T00:00:00Z",
            "--build-arg", "VCS_REF=abc1234",
            "redis",
        ]

    def test_down_flags(self, fake_runner, project_dir):
        compose = _project(fake_runner, project_dir)
        compose.down(["sentinel"], volumes=True, remove_orphans=True)
        assert fake_runner.calls[-1][-3:] == ["down", "-v", "--remove-orphans"]

    def test_logs_tail(self, fake_runner, project_dir):
        compose = _project(fake_runner, project_dir)
        compose.logs("redis", tail=50)
        assert fake_runner.calls[-1][-4:] == ["logs", "--tail", "50", "redis"]

    def test_service_state(self, fake_runner, project_dir):
        fake_runner.on("ps", "--format", "json", stdout='{"Service": "redis", "State": "running", "Health": "healthy"}')
        compose = _project(fake_runner, project_dir)
        assert compose.service_state("redis")["Health"] == "healthy"
        assert compose.service_state("other") is None

    def test_ps_failure_is_empty(self, fake_runner, project_dir):
        fake_runner.on("ps", returncode=1, stderr="no configuration file provided")
        assert _project(fake_runner, project_dir).ps() == []


class TestGenerateCompose:
    def test_redis_stack(self):
        data = yaml.safe_load(generate_compose(REDIS))
        assert data["name"] == "redis"
        services = data["services"]
        assert list(services) == ["redis", "redis-sentinel", "redis-exporter"]
        assert services["redis"]["build"] == {"context": ".", "dockerfile": "Dockerfile"}
        assert services["redis"]["ports"] == ["6379:6379"]
        assert services["redis"]["healthcheck"]["test"][0] == "CMD-SHELL"
        assert services["redis-sentinel"]["profiles"] == ["sentinel"]
        assert services["redis-exporter"]["depends_on"] == {"redis": {"condition": "service_healthy"}}
        assert data["volumes"]["redis_data"] == {"name": "redis_data"}

    def test_replication_ports_and_bind_mounts(self):
        data = yaml.safe_load(generate_compose(REDIS_REPLICATION))
        services = data["services"]
        assert services["redis-replica-1"]["ports"] == ["6380:6379"]
        assert services["haproxy"]["ports"] == ["6382:6382", "6383:6383", "8404:8404"]
        assert "./haproxy.cfg" not in data["volumes"]
        assert "env_file" not in services["redis-master"]

    def test_discourse_env_file(self):
        data = yaml.safe_load(generate_compose(DISCOURSE))
        assert data["services"]["discourse"]["env_file"] == [".env"]
        assert set(data["services"]["discourse"]["depends_on"]) == {"postgres", "redis"}

    def test_header(self):
        text = generate_compose(DISCOURSE)
        assert text.startswith("# Generated by stackpilot for stack discourse\n")

    def test_write(self, project_dir):
        path = write_compose_file("services: {}\n", project_dir / "sub" / "compose.yml")
        assert path.read_text() == "services: {}\n"
