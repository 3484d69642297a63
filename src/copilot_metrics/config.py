import os
from dataclasses import dataclass
from pathlib import Path

from copilot_metrics.errors import ConfigError
from copilot_metrics.models import InstallationCredential, Scope

DEFAULT_API_URL = "https://api.github.com"


@dataclass
class Config:
    app_id: "str" = ""
    installation_id: "str" = ""
    private_key_path: "str" = ""
    org: "str" = ""
    enterprise: "str" = ""

    api_url: "str" = DEFAULT_API_URL
    output_dir: "str" = "."
    # fixed pause between per-date requests, in seconds
    request_delay: "float" = 1.0
    log_level: "str" = "info"

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            app_id=os.environ.get("GITHUB_APP_ID", ""),
            installation_id=os.environ.get("GITHUB_INSTALLATION_ID", ""),
            private_key_path=os.environ.get("GITHUB_PRIVATE_KEY_PATH", ""),
            org=os.environ.get("GITHUB_ORG", ""),
            enterprise=os.environ.get("GITHUB_ENTERPRISE", ""),
            api_url=os.environ.get("GITHUB_API_URL", "") or DEFAULT_API_URL,
            output_dir=os.environ.get("OUTPUT_DIR", "") or ".",
        )

    def target_for(self, scope: "Scope") -> "str":
        """
        returns the organization login or enterprise slug a scope
        reads from.
        """
        if scope in (Scope.ENTERPRISE, Scope.USER):
            return self.enterprise
        return self.org

    def validate(self, scope: "Scope") -> "None":
        """
        raises ConfigError naming every missing variable needed to
        collect the given scope.
        """
        missing: "list[str]" = []
        if not self.app_id:
            missing.append("GITHUB_APP_ID")
        if not self.installation_id:
            missing.append("GITHUB_INSTALLATION_ID")
        if not self.private_key_path:
            missing.append("GITHUB_PRIVATE_KEY_PATH")
        if scope in (Scope.ENTERPRISE, Scope.USER):
            if not self.enterprise:
                missing.append("GITHUB_ENTERPRISE")
        elif not self.org:
            missing.append("GITHUB_ORG")

        if missing:
            raise ConfigError(
                f"missing required environment variables: {', '.join(missing)}"
            )

    def load_credential(self) -> "InstallationCredential":
        key_path = Path(self.private_key_path)
        if not key_path.is_file():
            raise ConfigError(f"private key not found: {self.private_key_path}")

        try:
            private_key = key_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigError(f"private key could not be read: {self.private_key_path}") from exc

        return InstallationCredential(
            app_id=self.app_id,
            private_key=private_key,
            installation_id=self.installation_id,
        )
