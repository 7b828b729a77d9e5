"""Tests for stackpilot.core.envfile."""

import stat

import pytest

from stackpilot.core.envfile import (
    format_env_value,
    parse_env_file,
    render_env,
    write_env_file,
)
from stackpilot.core.errors import ConfigError


class TestParseEnvFile:
    def test_forms(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text(
            "# comment\n"
            "\n"
            "REDIS_PASSWORD=abc\n"
            "export REDIS_MAXMEMORY=1gb\n"
            "DISCOURSE_HOSTNAME = forum.example.com  # public name\n"
            "SMTP_PASSWORD=\"p#ss word\"\n"
            "ADMIN_EMAIL='admin@example.com'\n"
            "not a variable line\n"
        )
        assert parse_env_file(path) == {
            "REDIS_PASSWORD": "abc",
            "REDIS_MAXMEMORY": "1gb",
            "DISCOURSE_HOSTNAME": "forum.example.com",
            "SMTP_PASSWORD": "p#ss word",
            "ADMIN_EMAIL": "admin@example.com",
        }

    def test_later_key_wins(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text("A=1\nA=2\n")
        assert parse_env_file(path) == {"A": "2"}

    def test_invalid_utf8(self, tmp_path):
        path = tmp_path / ".env"
        path.write_bytes(b"REDIS_PASSWORD=caf\xe9\n")
        with pytest.raises(ConfigError, match="Cannot read .env") as exc_info:
            parse_env_file(path)
        assert "not valid UTF-8" in exc_info.value.malformed[".env"]
        assert isinstance(exc_info.value.cause, UnicodeDecodeError)

    def test_unreadable(self, tmp_path):
        path = tmp_path / ".env"
        path.mkdir()
        with pytest.raises(ConfigError, match="Cannot read .env") as exc_info:
            parse_env_file(path)
        assert isinstance(exc_info.value.cause, OSError)


class TestFormatting:
    def test_plain(self):
        assert format_env_value("abc123") == "abc123"

    def test_quoted(self):
        assert format_env_value("") == '""'
        assert format_env_value("two words") == '"two words"'
        assert format_env_value('say "hi"') == "'say \"hi\"'"

    def test_render_sections(self):
        text = render_env({"Redis": {"A": "1"}, "Build Metadata": {"VCS_REF": "abc"}})
        assert text == "# Redis\nA=1\n\n# Build Metadata\nVCS_REF=abc\n"


class TestWriteEnvFile:
    def test_mode_and_content(self, tmp_path):
        path = write_env_file(tmp_path / "sub" / ".env", {"S": {"K": "v w"}})
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert parse_env_file(path) == {"K": "v w"}
