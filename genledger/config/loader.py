"""
Configuration management and loading.

Handles the YAML settings file and the credentials read from environment
variables.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

import yaml

from genledger.core.errors import ServerMisconfigured
from genledger.core.extractor import RetryPolicy

OPENAI_API_KEY = "OPENAI_API_KEY"
STRIPE_SECRET_KEY = "STRIPE_SECRET_KEY"
STRIPE_WEBHOOK_SECRET = "STRIPE_WEBHOOK_SECRET"


@dataclass(frozen=True)
class StorageConfig:
    """Where the balance store lives."""
    db_path: str = "genledger.db"

    def __post_init__(self):
        if not self.db_path or not self.db_path.strip():
            raise ValueError("db_path cannot be empty")


@dataclass(frozen=True)
class LedgerConfig:
    """Credit amounts used by the ledger and reconciler."""
    starter_credits: int = 5
    credits_per_generation: int = 1
    default_purchase_credits: int = 30

    def __post_init__(self):
        """Validate credit amounts."""
        if self.starter_credits < 0:
            raise ValueError("starter_credits must be >= 0")
        if self.credits_per_generation <= 0:
            raise ValueError("credits_per_generation must be > 0")
        if self.default_purchase_credits <= 0:
            raise ValueError("default_purchase_credits must be > 0")


@dataclass(frozen=True)
class ExtractorConfig:
    """Model and retry settings for structured extraction."""
    model: str = "gpt-4.1"
    max_attempts: int = 3
    timeout_seconds: float = 12.0
    base_temperature: float = 0.2
    strict_temperature: float = 0.0
    max_output_tokens: int = 700

    def __post_init__(self):
        """Validate extractor values."""
        if not self.model or not self.model.strip():
            raise ValueError("model cannot be empty")
        if not 1 <= self.max_attempts <= 10:
            raise ValueError("max_attempts must be between 1 and 10")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.max_output_tokens <= 0:
            raise ValueError("max_output_tokens must be > 0")
        for name in ("base_temperature", "strict_temperature"):
            if not 0 <= getattr(self, name) <= 2:
                raise ValueError(f"{name} must be between 0 and 2")

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_temperature=self.base_temperature,
            strict_temperature=self.strict_temperature,
            timeout_seconds=self.timeout_seconds,
            max_output_tokens=self.max_output_tokens,
        )


@dataclass(frozen=True)
class PaymentsConfig:
    """Payment processor call settings."""
    timeout_seconds: float = 15.0

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    extractor: ExtractorConfig = field(default_factory=ExtractorConfig)
    payments: PaymentsConfig = field(default_factory=PaymentsConfig)


@dataclass(frozen=True)
class Secrets:
    """Credentials read from the environment. Never loaded from YAML."""
    openai_api_key: Optional[str] = None
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None


_SECTIONS = {
    "storage": StorageConfig,
    "ledger": LedgerConfig,
    "extractor": ExtractorConfig,
    "payments": PaymentsConfig,
}


def default_config() -> AppConfig:
    """Configuration with every default applied."""
    return AppConfig()


def load_config(path: str) -> AppConfig:
    """Load and validate configuration from a YAML file.

    Every section is optional; missing keys take their defaults. Unknown
    keys and wrongly typed values are rejected so that a typo never silently
    falls back to a default.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return default_config()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    unknown_keys = set(raw_config.keys()) - set(_SECTIONS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {}
    for name, section_cls in _SECTIONS.items():
        data = raw_config.get(name) or {}
        if not isinstance(data, dict):
            raise ValueError(f"'{name}' must be a dictionary")
        sections[name] = _parse_section(data, name, section_cls)

    return AppConfig(**sections)


def _parse_section(data: Dict[str, Any], path: str, section_cls: type) -> Any:
    """Parse one section into its dataclass.

    Args:
        data: Section data
        path: Section name for error messages
        section_cls: Dataclass to build

    Returns:
        Validated section instance

    Raises:
        ValueError: If the section is invalid
    """
    declared = {f.name: f for f in fields(section_cls)}
    unknown_keys = set(data.keys()) - set(declared)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    kwargs = {}
    for key, value in data.items():
        expected = declared[key].type
        if expected in (int, "int"):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"'{key}' in {path} must be an integer")
        elif expected in (float, "float"):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"'{key}' in {path} must be a number")
            value = float(value)
        elif expected in (str, "str"):
            if not isinstance(value, str):
                raise ValueError(f"'{key}' in {path} must be a string")
        kwargs[key] = value

    try:
        return section_cls(**kwargs)
    except ValueError as e:
        raise ValueError(f"Invalid {path}: {e}")


def load_secrets(
    required: Iterable[str] = (),
    environ: Optional[Mapping[str, str]] = None,
) -> Secrets:
    """Read credentials from the environment.

    Args:
        required: Variable names that must be present and non-empty
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        Secrets with whatever is set

    Raises:
        ServerMisconfigured: If any required variable is missing
    """
    env = os.environ if environ is None else environ

    def _get(name: str) -> Optional[str]:
        value = (env.get(name) or "").strip()
        return value or None

    missing = [name for name in required if not _get(name)]
    if missing:
        raise ServerMisconfigured(missing)

    return Secrets(
        openai_api_key=_get(OPENAI_API_KEY),
        stripe_secret_key=_get(STRIPE_SECRET_KEY),
        stripe_webhook_secret=_get(STRIPE_WEBHOOK_SECRET),
    )
