import json
from pathlib import Path
from typing import Any, Callable

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from prometheus_client import CollectorRegistry

from copilot_metrics.config import Config
from copilot_metrics.models import InstallationCredential


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture(scope="session")
def rsa_key() -> "rsa.RSAPrivateKey":
    """
    one RSA key for the whole session, generating keys is slow.
    """
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture()
def private_key_pem(rsa_key: "rsa.RSAPrivateKey") -> "str":
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture()
def credential(private_key_pem: "str") -> "InstallationCredential":
    return InstallationCredential(
        app_id="12345",
        private_key=private_key_pem,
        installation_id="42",
    )


@pytest.fixture()
def config(tmp_path: "Path", private_key_pem: "str") -> "Config":
    key_path = tmp_path / "app.private-key.pem"
    key_path.write_text(private_key_pem)
    return Config(
        app_id="12345",
        installation_id="42",
        private_key_path=str(key_path),
        org="octo-org",
        enterprise="octo-ent",
        output_dir=str(tmp_path / "out"),
        request_delay=0.5,
    )


@pytest.fixture()
def report_line() -> "Callable[..., dict[str, Any]]":
    """
    builds one line of a Copilot metrics report.
    """

    def _build(
        login: "str | None" = "octocat",
        day: "str" = "2026-02-15",
        acceptances: "int | None" = 0,
        suggestions: "int | None" = 0,
        lines_accepted: "int" = 0,
        lines_suggested: "int" = 0,
        ide_chats: "int" = 0,
        dotcom_chats: "int" = 0,
    ) -> "dict[str, Any]":
        line: "dict[str, Any]" = {
            "date": day,
            "copilot_ide_code_completions": {
                "total_code_acceptances": acceptances,
                "total_code_suggestions": suggestions,
                "total_code_lines_accepted": lines_accepted,
                "total_code_lines_suggested": lines_suggested,
            },
            "copilot_ide_chat": {"total_chats": ide_chats},
            "copilot_dotcom_chat": {"total_chats": dotcom_chats},
        }
        if login is not None:
            line["user_login"] = login
        return line

    return _build


def ndjson(*lines: "dict[str, Any]") -> "bytes":
    return "".join(json.dumps(line) + "\n" for line in lines).encode()


@pytest.fixture()
def to_ndjson() -> "Callable[..., bytes]":
    return ndjson
