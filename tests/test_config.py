"""Tests for configuration."""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from wafsync.config import Settings, find_vercel_project
from wafsync.models import RuleMode

ENV_VARS = ["VERCEL_TOKEN", "PROJECT_ID", "TEAM_ID", "TEAM_SLUG", "RULE_MODE"]


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestSettings:
    """Test Settings loading."""

    def test_defaults(self, clean_env: pytest.MonkeyPatch) -> None:
        settings = Settings(_env_file=None)

        assert settings.api_base_url == "https://api.vercel.com"
        assert settings.max_ips_per_condition == 75
        assert settings.rate_limit_delay == 0.8
        assert settings.mode is None
        assert not settings.dry_run

    def test_from_environment(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("RULE_MODE", "BYPASS")
        clean_env.setenv("PROJECT_ID", "prj_env")
        clean_env.setenv("MAX_IPS_PER_CONDITION", "50")

        settings = Settings(_env_file=None)

        assert settings.mode is RuleMode.BYPASS
        assert settings.project_id == "prj_env"
        assert settings.max_ips_per_condition == 50

    def test_from_env_file(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("VERCEL_TOKEN=secret\nRULE_MODE=deny\n")

        settings = Settings(_env_file=env_file)

        assert settings.vercel_token == "secret"
        assert settings.mode is RuleMode.DENY

    def test_invalid_rule_mode(self, clean_env: pytest.MonkeyPatch) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, rule_mode="allow")

    def test_invalid_capacity(self, clean_env: pytest.MonkeyPatch) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, max_ips_per_condition=0)

    def test_retry_policy(self, clean_env: pytest.MonkeyPatch) -> None:
        settings = Settings(_env_file=None, max_retries=4, retry_jitter=0)

        assert settings.retry_policy().max_attempts == 4
        assert settings.retry_policy(7).max_attempts == 7
        assert settings.retry_policy().rate_limit_backoff == 60.0


class TestProjectDetection:
    """Test .vercel/project.json discovery."""

    @pytest.fixture
    def project_dir(self, tmp_path: Path) -> Path:
        (tmp_path / ".vercel").mkdir()
        (tmp_path / ".vercel" / "project.json").write_text(
            json.dumps({"projectId": "prj_linked", "orgId": "team_linked"})
        )
        nested = tmp_path / "app" / "src"
        nested.mkdir(parents=True)
        return nested

    def test_found_in_parent(self, project_dir: Path) -> None:
        assert find_vercel_project(project_dir) == {
            "projectId": "prj_linked",
            "orgId": "team_linked",
        }

    def test_fills_missing_ids(
        self, clean_env: pytest.MonkeyPatch, project_dir: Path
    ) -> None:
        settings = Settings(_env_file=None).with_detected_project(project_dir)
        assert settings.project_id == "prj_linked"
        assert settings.team_id == "team_linked"

    def test_explicit_ids_win(
        self, clean_env: pytest.MonkeyPatch, project_dir: Path
    ) -> None:
        settings = Settings(_env_file=None, project_id="prj_explicit")
        detected = settings.with_detected_project(project_dir)
        assert detected.project_id == "prj_explicit"
        assert detected.team_id == "team_linked"

    def test_unreadable_file(self, tmp_path: Path) -> None:
        (tmp_path / ".vercel").mkdir()
        (tmp_path / ".vercel" / "project.json").write_text("{not json")
        assert find_vercel_project(tmp_path) is None
