"""
Configuration management (SSOT).

This module defines ALL configuration for the SubScript pipeline.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Credentials may come from the YAML file or the environment; the environment wins
- A missing mail or inference setting turns a sync run into a no-op, never a failure
- Every external call has a finite timeout
"""

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class ImapConfig:
    """Mail server configuration.

    Only one account is supported. The password is kept out of the YAML file
    in most deployments and supplied via SUBSCRIPT_IMAP_PASSWORD.
    """

    host: str = ""
    port: int = 993
    username: str = ""
    password: str = ""
    use_ssl: bool = True
    mailbox: str = "INBOX"
    # Socket timeout for connect and every IMAP command (seconds)
    timeout_seconds: int = 30


@dataclass
class LLMConfig:
    """Local LLM (Ollama) configuration.

    - ollama_url: Can be localhost, LAN IP, or remote URL
    - auth_header: Optional auth header for proxied deployments
    """

    ollama_url: str = "http://localhost:11434"
    model: str = "llama3"
    # Format: "Bearer <token>" or "Header-Name: value"
    auth_header: str | None = None
    # Read timeout for a single generate call (seconds)
    timeout_seconds: int = 60

    def is_remote(self) -> bool:
        """Check if Ollama URL is remote (not localhost)."""
        url_lower = self.ollama_url.lower()
        return not any(
            local in url_lower
            for local in ["localhost", "127.0.0.1", "::1", "host.docker.internal"]
        )


@dataclass
class ConverterConfig:
    """MarkItDown converter settings."""

    # Interpreter used to run `python -m markitdown`
    python_executable: str = field(default_factory=lambda: sys.executable)
    timeout_seconds: int = 60


@dataclass
class StorageConfig:
    """SQLite storage locations.

    Two databases share one schema: the production ledger and an isolated
    test store used to verify the pipeline without touching real data.
    """

    data_dir: Path = field(default_factory=lambda: Path("data"))
    production_db: str = "subscript.db"
    test_db: str = "subscript_test.db"
    receipt_retention_days: int = 365

    @property
    def production_path(self) -> Path:
        return self.data_dir / self.production_db

    @property
    def test_path(self) -> Path:
        return self.data_dir / self.test_db


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    imap: ImapConfig = field(default_factory=ImapConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    converter: ConverterConfig = field(default_factory=ConverterConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    def missing_sync_settings(self) -> list[str]:
        """List required sync settings that are empty.

        A non-empty result means a sync run has nothing to connect to and is
        skipped rather than failed.
        """
        missing: list[str] = []
        if not self.imap.host:
            missing.append("imap.host")
        if not self.imap.username:
            missing.append("imap.username")
        if not self.imap.password:
            missing.append("imap.password")
        if not self.llm.ollama_url:
            missing.append("llm.ollama_url")
        if not self.llm.model:
            missing.append("llm.model")
        return missing

    def validate(self) -> list[str]:
        """Validate configuration consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not 0 < self.imap.port < 65536:
            errors.append(f"imap.port must be between 1 and 65535, got {self.imap.port}")
        if self.imap.timeout_seconds <= 0:
            errors.append("imap.timeout_seconds must be positive")
        if self.llm.timeout_seconds <= 0:
            errors.append("llm.timeout_seconds must be positive")
        if self.converter.timeout_seconds <= 0:
            errors.append("converter.timeout_seconds must be positive")
        if self.storage.production_db == self.storage.test_db:
            errors.append("storage.production_db and storage.test_db must differ")
        if self.storage.receipt_retention_days < 1:
            errors.append("storage.receipt_retention_days must be at least 1")
        if self.llm.is_remote() and not self.llm.auth_header:
            # Allowed; warn only
            logger.warning("Remote Ollama at %s has no llm.auth_header", self.llm.ollama_url)

        return errors


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name, "").strip().lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    return default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - SUBSCRIPT_IMAP_HOST
    - SUBSCRIPT_IMAP_PORT
    - SUBSCRIPT_IMAP_USERNAME
    - SUBSCRIPT_IMAP_PASSWORD
    - SUBSCRIPT_IMAP_USE_SSL (true/false)
    - OLLAMA_URL
    - OLLAMA_MODEL
    - OLLAMA_TIMEOUT (request timeout in seconds)
    - SUBSCRIPT_DATA_DIR

    Raises:
        ConfigValidationError: If the file is malformed or fails validate().
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    if not isinstance(data, dict):
        raise ConfigValidationError(f"{config_path} must contain a YAML mapping")

    try:
        # IMAP config
        imap_data = data.get("imap", {})
        imap = ImapConfig(
            host=os.environ.get("SUBSCRIPT_IMAP_HOST", imap_data.get("host", "")),
            port=int(os.environ.get("SUBSCRIPT_IMAP_PORT", imap_data.get("port", 993))),
            username=os.environ.get("SUBSCRIPT_IMAP_USERNAME", imap_data.get("username", "")),
            password=os.environ.get("SUBSCRIPT_IMAP_PASSWORD", imap_data.get("password", "")),
            use_ssl=_env_bool("SUBSCRIPT_IMAP_USE_SSL", imap_data.get("use_ssl", True)),
            mailbox=imap_data.get("mailbox", "INBOX"),
            timeout_seconds=int(imap_data.get("timeout_seconds", 30)),
        )

        # LLM config
        llm_data = data.get("llm", {})
        llm = LLMConfig(
            ollama_url=os.environ.get(
                "OLLAMA_URL", llm_data.get("ollama_url", "http://localhost:11434")
            ),
            model=os.environ.get("OLLAMA_MODEL", llm_data.get("model", "llama3")),
            auth_header=os.environ.get("OLLAMA_AUTH_HEADER", llm_data.get("auth_header")),
            timeout_seconds=int(os.environ.get(
                "OLLAMA_TIMEOUT", llm_data.get("timeout_seconds", 60)
            )),
        )

        # Converter config
        converter_data = data.get("converter", {})
        converter = ConverterConfig(
            python_executable=converter_data.get("python_executable") or sys.executable,
            timeout_seconds=int(converter_data.get("timeout_seconds", 60)),
        )

        # Storage config
        storage_data = data.get("storage", {})
        storage = StorageConfig(
            data_dir=Path(os.environ.get("SUBSCRIPT_DATA_DIR", storage_data.get("data_dir", "data"))),
            production_db=storage_data.get("production_db", "subscript.db"),
            test_db=storage_data.get("test_db", "subscript_test.db"),
            receipt_retention_days=int(storage_data.get("receipt_retention_days", 365)),
        )
    except (TypeError, ValueError, AttributeError) as e:
        raise ConfigValidationError(f"Invalid configuration in {config_path}: {e}") from e

    config = Config(imap=imap, llm=llm, converter=converter, storage=storage)
    errors = config.validate()
    if errors:
        raise ConfigValidationError(f"Invalid configuration in {config_path}: " + "; ".join(errors))
    return config


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# SubScript mail ingestion configuration
#
# Secrets can be supplied through the environment instead of this file:
# SUBSCRIPT_IMAP_PASSWORD, OLLAMA_AUTH_HEADER

imap:
  host: ""                                 # e.g. imap.fastmail.com
  port: 993
  username: ""
  password: ""                             # Prefer SUBSCRIPT_IMAP_PASSWORD
  use_ssl: true
  mailbox: "INBOX"
  timeout_seconds: 30

# Local LLM settings (Ollama)
llm:
  ollama_url: "http://localhost:11434"
  model: "llama3"
  auth_header: null                        # Optional auth header for proxied deployments
  timeout_seconds: 60

# Document conversion (python -m markitdown)
converter:
  python_executable: null                  # Defaults to the running interpreter
  timeout_seconds: 60

storage:
  data_dir: "data"
  production_db: "subscript.db"
  test_db: "subscript_test.db"             # Isolated store for [test] mail and --test-mode
  receipt_retention_days: 365
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
