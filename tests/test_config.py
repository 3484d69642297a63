from pathlib import Path

import pytest

from copilot_metrics.config import DEFAULT_API_URL, Config
from copilot_metrics.errors import ConfigError
from copilot_metrics.models import Scope

ENV_VARS = [
    "GITHUB_APP_ID",
    "GITHUB_INSTALLATION_ID",
    "GITHUB_PRIVATE_KEY_PATH",
    "GITHUB_ORG",
    "GITHUB_ENTERPRISE",
    "GITHUB_API_URL",
    "OUTPUT_DIR",
]


class TestConfigFromEnv:
    def test_defaults(self, monkeypatch: "pytest.MonkeyPatch") -> "None":
        for name in ENV_VARS:
            monkeypatch.delenv(name, raising=False)
        config = Config.from_env()
        assert config.app_id == ""
        assert config.org == ""
        assert config.api_url == DEFAULT_API_URL
        assert config.output_dir == "."
        assert config.request_delay == 1.0

    def test_reads_env_vars(self, monkeypatch: "pytest.MonkeyPatch") -> "None":
        monkeypatch.setenv("GITHUB_APP_ID", "12345")
        monkeypatch.setenv("GITHUB_INSTALLATION_ID", "42")
        monkeypatch.setenv("GITHUB_PRIVATE_KEY_PATH", "/keys/app.pem")
        monkeypatch.setenv("GITHUB_ORG", "octo-org")
        monkeypatch.setenv("GITHUB_ENTERPRISE", "octo-ent")
        monkeypatch.setenv("GITHUB_API_URL", "https://ghe.example.com/api/v3")
        monkeypatch.setenv("OUTPUT_DIR", "/var/reports")
        config = Config.from_env()
        assert config.app_id == "12345"
        assert config.installation_id == "42"
        assert config.private_key_path == "/keys/app.pem"
        assert config.org == "octo-org"
        assert config.enterprise == "octo-ent"
        assert config.api_url == "https://ghe.example.com/api/v3"
        assert config.output_dir == "/var/reports"


class TestConfigValidate:
    def test_names_every_missing_variable(self) -> "None":
        with pytest.raises(ConfigError) as exc_info:
            Config().validate(Scope.ORGANIZATION)
        message = str(exc_info.value)
        for name in ["GITHUB_APP_ID", "GITHUB_INSTALLATION_ID", "GITHUB_PRIVATE_KEY_PATH", "GITHUB_ORG"]:
            assert name in message
        assert "GITHUB_ENTERPRISE" not in message

    @pytest.mark.parametrize("scope", [Scope.ENTERPRISE, Scope.USER])
    def test_enterprise_scopes_need_enterprise(self, scope: "Scope") -> "None":
        config = Config(app_id="1", installation_id="2", private_key_path="k.pem", org="octo-org")
        with pytest.raises(ConfigError, match="GITHUB_ENTERPRISE"):
            config.validate(scope)

    def test_team_scope_needs_org(self) -> "None":
        config = Config(app_id="1", installation_id="2", private_key_path="k.pem", enterprise="e")
        with pytest.raises(ConfigError, match="GITHUB_ORG"):
            config.validate(Scope.TEAM)

    def test_complete_config_passes(self, config: "Config") -> "None":
        for scope in Scope:
            config.validate(scope)

    def test_target_for_scope(self, config: "Config") -> "None":
        assert config.target_for(Scope.ORGANIZATION) == "octo-org"
        assert config.target_for(Scope.TEAM) == "octo-org"
        assert config.target_for(Scope.ENTERPRISE) == "octo-ent"
        assert config.target_for(Scope.USER) == "octo-ent"


class TestLoadCredential:
    def test_reads_key_file(self, config: "Config", private_key_pem: "str") -> "None":
        credential = config.load_credential()
        assert credential.app_id == "12345"
        assert credential.installation_id == "42"
        assert credential.private_key == private_key_pem

    def test_missing_key_file(self, tmp_path: "Path") -> "None":
        config = Config(private_key_path=str(tmp_path / "nope.pem"))
        with pytest.raises(ConfigError, match="private key not found"):
            config.load_credential()

    def test_undecodable_key_file(self, tmp_path: "Path") -> "None":
        key_path = tmp_path / "app.private-key.pem"
        key_path.write_bytes(b"\xff\xfe\x00binary")
        config = Config(private_key_path=str(key_path))
        with pytest.raises(ConfigError, match="could not be read"):
            config.load_credential()
