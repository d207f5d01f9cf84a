"""
Configuration module for the etcd provider framework.

Loads configuration from environment variables. Provider-specific settings
are passed through as JSON keyed by provider name.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from providers.base import TLSInfo

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# In-cluster service account token, used when no token is configured
DEFAULT_TOKEN_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/token"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [p.strip() for p in raw.split(",") if p.strip()]


@dataclass
class StoreConfig:
    """Remote resource store connection configuration."""

    api_url: str = "https://kubernetes.default.svc"
    token: str = field(default="", repr=False)  # Never log token
    token_file: Optional[str] = None
    ca_file: Optional[str] = None
    verify_ssl: bool = True
    timeout: float = 30.0

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            api_url=os.getenv("STORE_API_URL", "https://kubernetes.default.svc"),
            token=os.getenv("STORE_TOKEN", ""),
            token_file=os.getenv("STORE_TOKEN_FILE") or None,
            ca_file=os.getenv("STORE_CA_FILE") or None,
            verify_ssl=_env_bool("STORE_VERIFY_SSL", "true"),
            timeout=float(os.getenv("STORE_TIMEOUT", "30")),
        )

    def load_token(self) -> Optional[str]:
        """Return the bearer token, reading it from token_file if needed."""
        if self.token:
            return self.token
        path = self.token_file or DEFAULT_TOKEN_FILE
        if os.path.exists(path):
            with open(path) as f:
                return f.read().strip()
        return None


@dataclass
class ProbeConfig:
    """Member health probe configuration."""

    timeout: float = 5.0
    cert_file: Optional[str] = None
    key_file: Optional[str] = None
    ca_file: Optional[str] = None

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            timeout=float(os.getenv("PROBE_TIMEOUT", "5")),
            cert_file=os.getenv("PROBE_CERT_FILE") or None,
            key_file=os.getenv("PROBE_KEY_FILE") or None,
            ca_file=os.getenv("PROBE_CA_FILE") or None,
        )

    def tls_info(self) -> Optional[TLSInfo]:
        """Client TLS material for probes, or None when not configured."""
        info = TLSInfo(
            cert_file=self.cert_file,
            key_file=self.key_file,
            trusted_ca_file=self.ca_file,
        )
        return None if info.empty() else info


@dataclass
class ProviderConfig:
    """Provider system configuration."""

    # Feature names allowed to run (empty = every feature a cluster enables)
    enabled_features: List[str] = field(default_factory=list)

    # Provider-specific configurations keyed by provider name
    provider_configs: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        provider_configs = {}
        raw = os.getenv("PROVIDER_CONFIGS")
        if raw:
            try:
                provider_configs = json.loads(raw)
            except json.JSONDecodeError as e:
                raise ValueError(f"PROVIDER_CONFIGS is not valid JSON: {e}") from e
            if not isinstance(provider_configs, dict):
                raise ValueError("PROVIDER_CONFIGS must be a JSON object")

        return cls(
            enabled_features=_env_list("ENABLED_FEATURES"),
            provider_configs=provider_configs,
        )

    def get_provider_config(self, provider_name: str) -> Dict[str, Any]:
        """Get configuration for a specific provider."""
        return self.provider_configs.get(provider_name, {})


@dataclass
class Config:
    """Main configuration object."""

    store: StoreConfig
    probe: ProbeConfig
    providers: ProviderConfig
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            store=StoreConfig.from_env(),
            probe=ProbeConfig.from_env(),
            providers=ProviderConfig.from_env(),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            store=StoreConfig(),
            probe=ProbeConfig(),
            providers=ProviderConfig(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for processes embedding the providers."""
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
