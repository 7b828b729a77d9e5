"""Tests for stackpilot.deploy.operations."""

from __future__ import annotations

import stat
from datetime import datetime

import pytest
import yaml

from stackpilot.core.envfile import parse_env_file
from stackpilot.core.errors import BackupError, CommandError
from stackpilot.deploy.config import DeploymentConfig
from stackpilot.deploy.operations import StackOperations, generate_secret, generated_environ
from stackpilot.deploy.services import DISCOURSE, REDIS_REPLICATION

FIXED_NOW = datetime(2026, 3, 14, 9, 26, 53)


def _ops(stack, project_dir, runner, sleep=None, values=None, events=None):
    config = DeploymentConfig.for_stack(stack, project_dir=project_dir, values=values or {})
    reporter = (lambda level, message: events.append((level, message))) if events is not None else None
    return StackOperations(
        config, runner, reporter=reporter, sleep=sleep or (lambda s: None), now=lambda: FIXED_NOW
    )


class TestGenerateSecret:
    def test_hex_length(self):
        assert len(generate_secret("hex:64")) == 128
        assert int(generate_secret("hex:8"), 16) >= 0

    def test_base64_is_url_safe(self):
        value = generate_secret("base64:32")
        assert len(value) >= 40
        assert not set(value) & set("+/=")

    def test_unique(self):
        assert generate_secret("base64:32") != generate_secret("base64:32")

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            generate_secret("rot13:4")


class TestGeneratedEnviron:
    def test_fills_missing_secret(self):
        env = generated_environ(REDIS_REPLICATION, {})
        assert env["REDIS_PASSWORD"]

    def test_keeps_explicit_value(self):
        assert generated_environ(REDIS_REPLICATION, {"REDIS_PASSWORD": "mine"})["REDIS_PASSWORD"] == "mine"

    def test_keeps_existing_file_value(self):
        env = generated_environ(REDIS_REPLICATION, {}, existing={"REDIS_PASSWORD": "from-file"})
        assert "REDIS_PASSWORD" not in env


class TestInit:
    def test_creates_env_dirs_and_compose(self, project_dir, fake_runner):
        events: list = []
        generated = _ops("discourse", project_dir, fake_runner, events=events).init()

        assert set(generated) == set(DISCOURSE.secrets)
        env = parse_env_file(project_dir / ".env")
        assert env["DISCOURSE_SECRET_KEY_BASE"] == generated["DISCOURSE_SECRET_KEY_BASE"]
        assert env["SMTP_ADDRESS"] == ""
        assert stat.S_IMODE((project_dir / ".env").stat().st_mode) == 0o600
        for directory in DISCOURSE.data_dirs:
            assert (project_dir / directory).is_dir()
        compose = yaml.safe_load((project_dir / "docker-compose.prod.yml").read_text())
        assert "discourse" in compose["services"]
        assert any(level == "warning" and "SMTP_ADDRESS" in msg for level, msg in events)
        assert fake_runner.calls == []

    def test_copies_example(self, project_dir, fake_runner):
        (project_dir / ".env.example").write_text("REDIS_PASSWORD=change-me\n")
        _ops("redis", project_dir, fake_runner).init()
        assert parse_env_file(project_dir / ".env") == {"REDIS_PASSWORD": "change-me"}
        assert stat.S_IMODE((project_dir / ".env").stat().st_mode) == 0o600

    def test_never_overwrites_env(self, redis_project, fake_runner):
        events: list = []
        generated = _ops("redis", redis_project, fake_runner, events=events).init()
        assert generated == {}
        assert parse_env_file(redis_project / ".env")["REDIS_PASSWORD"] == "s3cret-pass"
        assert ("warning", ".env file already exists") in events

    def test_keeps_existing_compose_file(self, project_dir, fake_runner):
        (project_dir / "docker-compose.prod.yml").write_text("services: {}\n")
        _ops("redis", project_dir, fake_runner).init()
        assert (project_dir / "docker-compose.prod.yml").read_text() == "services: {}\n"


class TestStatus:
    def test_not_running_skips_scripts(self, redis_project, fake_runner):
        statuses = _ops("redis", redis_project, fake_runner).status()
        assert [s.status for s in statuses] == ["not_found"] * 3
        assert fake_runner.count("exec") == 0

    def test_running_runs_scripts(self, redis_project, fake_runner):
        fake_runner.on("ps", "--format", "json", stdout='{"Service": "redis", "State": "running", "Health": "healthy"}')
        fake_runner.on("/usr/local/bin/redis-info.sh", stdout="\n".join(f"line{i}" for i in range(40)))
        events: list = []
        statuses = _ops("redis", redis_project, fake_runner, values={"REDIS_PASSWORD": "pw"}, events=events).status()
        assert statuses[0].status == "healthy"
        assert ("success", "Health check passed") in events
        detail = [msg for level, msg in events if level == "detail"][-1]
        assert detail.splitlines() == [f"line{i}" for i in range(20)]

    def test_access_hints(self, project_dir, fake_runner):
        events: list = []
        _ops("discourse", project_dir, fake_runner, values={"DISCOURSE_HOSTNAME": "forum.example.com"}, events=events).status()
        assert ("info", "URL: https://forum.example.com") in events
        assert ("info", "Admin: Not configured") in events


class TestBackup:
    def test_redis_recipe(self, redis_project, fake_runner, fake_sleep):
        fake_runner.on("cp", "/data/appendonly.aof", returncode=1)
        events: list = []
        ops = _ops("redis", redis_project, fake_runner, sleep=fake_sleep, values={"REDIS_PASSWORD": "pw"}, events=events)
        backup_dir = ops.backup()

        assert backup_dir == redis_project / "backups" / "20260314_092653"
        assert backup_dir.is_dir()
        assert fake_runner.count("exec", "-T", "-e", "REDISCLI_AUTH", "redis", "redis-cli", "BGSAVE") == 1
        assert fake_runner.env_of("redis-cli", "BGSAVE")["REDISCLI_AUTH"] == "pw"
        assert fake_sleep.calls == [5.0]
        assert fake_runner.count("docker", "run", "--rm", "-v", "redis_data:/data") == 2
        assert fake_runner.count("redis_data:/data:ro") == 1
        assert ("warning", "No appendonly.aof found in redis_data") in events

    def test_discourse_dump(self, project_dir, fake_runner, fake_sleep):
        fake_runner.on("pg_dump", stdout="-- PostgreSQL database dump\n")
        backup_dir = _ops("discourse", project_dir, fake_runner, sleep=fake_sleep).backup()
        assert (backup_dir / "database.sql").read_text().startswith("-- PostgreSQL")
        assert fake_sleep.calls == []
        assert fake_runner.count("tar", "czf", "/backup/uploads.tar.gz") == 1
        assert fake_runner.count("tar", "czf", "/backup/postgres_data.tar.gz") == 1

    def test_dump_failure(self, project_dir, fake_runner):
        fake_runner.on("pg_dump", returncode=1, stderr="role does not exist")
        with pytest.raises(BackupError, match="database.sql"):
            _ops("discourse", project_dir, fake_runner).backup()
        assert fake_runner.count("tar") == 0

    def test_no_recipe(self, project_dir, fake_runner):
        with pytest.raises(BackupError):
            _ops("redis-replication", project_dir, fake_runner).backup()


class TestBenchmark:
    def test_runs_with_password(self, redis_project, fake_runner):
        fake_runner.on("redis-cli", "ping", stdout="PONG\n")
        fake_runner.on("sh", "-c", stdout="SET: 90000.00 requests per second\n")
        out = _ops("redis", redis_project, fake_runner, values={"REDIS_PASSWORD": "pw"}).benchmark()
        assert "requests per second" in out
        call = fake_runner.find("sh", "-c")[0]
        assert call[-1].startswith("redis-benchmark -h 127.0.0.1 -p 6379")
        assert call[-1].endswith('-q -a "$REDISCLI_AUTH"')
        assert "pw" not in call
        assert fake_runner.env_of("sh", "-c")["REDISCLI_AUTH"] == "pw"

    def test_runs_without_password(self, redis_project, fake_runner):
        fake_runner.on("redis-cli", "ping", stdout="PONG\n")
        _ops("redis", redis_project, fake_runner, values={"REDIS_PASSWORD": ""}).benchmark()
        call = fake_runner.find("redis-benchmark")[0]
        assert call[-1] == "-q"
        assert "sh" not in call

    def test_not_responding(self, redis_project, fake_runner):
        fake_runner.on("redis-cli", "ping", returncode=1)
        with pytest.raises(CommandError, match="Redis is not responding"):
            _ops("redis", redis_project, fake_runner).benchmark()
        assert fake_runner.count("redis-benchmark") == 0

    def test_discourse_has_none(self, project_dir, fake_runner):
        with pytest.raises(CommandError):
            _ops("discourse", project_dir, fake_runner).benchmark()


class TestStop:
    def test_keeps_volumes(self, redis_project, fake_runner):
        _ops("redis", redis_project, fake_runner).stop()
        call = fake_runner.find("down")[0]
        assert "-v" not in call
        assert "sentinel" in call

    def test_failure(self, redis_project, fake_runner):
        fake_runner.on("down", returncode=1)
        with pytest.raises(CommandError):
            _ops("redis", redis_project, fake_runner).stop()

    def test_cleanup_removes_volumes(self, redis_project, fake_runner):
        assert _ops("redis", redis_project, fake_runner).cleanup()
        assert fake_runner.count("down", "-v", "--remove-orphans") == 1
