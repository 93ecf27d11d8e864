"""
Config system - Layered typed configuration with validation.

Merge precedence (later overrides earlier):
defaults < YAML/JSON file < .env file < environment variables < overrides
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional, TYPE_CHECKING

import yaml
from dotenv import dotenv_values

from storefront_sessions.faults import Fault, FaultDomain, Severity

if TYPE_CHECKING:
    from storefront_sessions.sessions.policy import SessionTokenPolicy, TokenHooks
    from storefront_sessions.sessions.store import MemoryStore, FileStore


logger = logging.getLogger("storefront_sessions.config")

ENV_PREFIX = "SFS_"

# Fallback used when no secret is configured; accepted in dev mode only
INSECURE_DEFAULT_SECRET = "graphql-jwt-auth"
_INSECURE_SECRETS = {INSECURE_DEFAULT_SECRET, "", None}

# Values kept as the exact string given (a secret like "0123" must not become 123)
_RAW_STRING_KEYS = {("tokens", "secret_key")}


# ============================================================================
# Faults
# ============================================================================

class ConfigFault(Fault):
    """Configuration is invalid. Raised at startup, never per request."""

    domain = FaultDomain.CONFIG
    code = "CONFIG_INVALID"
    message = "Configuration is invalid"
    severity = Severity.FATAL
    public = False


class InsecureSecretFault(ConfigFault):
    """Token secret is unset or a known default outside dev mode."""

    code = "CONFIG_INSECURE_SECRET"
    message = (
        "Session token secret_key is insecure or unset in non-dev mode. "
        f"Set a strong secret via {ENV_PREFIX}TOKENS__SECRET_KEY or config."
    )


# ============================================================================
# ConfigLoader
# ============================================================================

class ConfigLoader:
    """
    Loads and merges configuration from multiple sources.

    Example:
        >>> loader = ConfigLoader.load(paths=["storefront.yaml"], env_file=".env")
        >>> loader.get("tokens.issuer")
        'https://shop.example'
    """

    def __init__(self, env_prefix: str = ENV_PREFIX):
        self.env_prefix = env_prefix
        self.config_data: Dict[str, Any] = {}

    @classmethod
    def load(
        cls,
        paths: Optional[list[str]] = None,
        env_prefix: str = ENV_PREFIX,
        env_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
        environ: Optional[Dict[str, str]] = None,
    ) -> ConfigLoader:
        """
        Load configuration from multiple sources with proper merge strategy.

        Args:
            paths: Config file paths (.yaml, .yml or .json)
            env_prefix: Prefix for environment variables
            env_file: Path to .env file
            overrides: Manual overrides (highest precedence)
            environ: Environment mapping (defaults to os.environ)

        Returns:
            Configured ConfigLoader instance

        Raises:
            ConfigFault: A config file is missing or unreadable
        """
        loader = cls(env_prefix=env_prefix)

        for path in paths or []:
            loader._load_file(Path(path))

        if env_file:
            loader._load_env_file(env_file)

        loader._load_from_env(os.environ if environ is None else environ)

        if overrides:
            loader._merge_dict(loader.config_data, overrides)

        return loader

    def _load_file(self, path: Path):
        if not path.exists():
            raise ConfigFault(message=f"Config file not found: {path}")

        try:
            if path.suffix == ".json":
                self._load_json_file(path)
            elif path.suffix in (".yaml", ".yml"):
                self._load_yaml_file(path)
            else:
                raise ConfigFault(message=f"Unsupported config file type: {path.suffix}")
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigFault(message=f"Could not read config file {path}: {e}")

    def _load_json_file(self, path: Path):
        """Load config from JSON file."""
        with open(path) as f:
            data = json.load(f)
            self._merge_dict(self.config_data, data)

    def _load_yaml_file(self, path: Path):
        """Load config from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
            if data:
                self._merge_dict(self.config_data, data)

    def _load_env_file(self, path: str):
        """Load prefixed keys from a .env file."""
        if not Path(path).exists():
            return

        for key, value in dotenv_values(path).items():
            if value is not None and key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _load_from_env(self, environ):
        """Load config from environment variables."""
        for key, value in environ.items():
            if key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _set_nested(self, key: str, value: str):
        """Convert SFS_TOKENS__SECRET_KEY to nested dict."""
        key = key[len(self.env_prefix):]

        # Split by double underscore for nested keys
        parts = key.lower().split("__")

        current = self.config_data
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        if tuple(parts) in _RAW_STRING_KEYS:
            current[parts[-1]] = value
        else:
            current[parts[-1]] = self._parse_value(value)

    def _parse_value(self, value: str) -> Any:
        """Parse string value to appropriate type."""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        if value.startswith(("{", "[")):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass

        return value

    def _merge_dict(self, target: dict, source: dict):
        """Deep merge source into target."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._merge_dict(target[key], value)
            else:
                target[key] = value

    def get(self, path: str, default: Any = None) -> Any:
        """Get config value by dot-separated path."""
        current = self.config_data
        for part in path.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current

    def to_dict(self) -> Dict[str, Any]:
        return self.config_data


# ============================================================================
# Settings
# ============================================================================

@dataclass
class TokensConfig:
    """Token signing settings."""

    secret_key: Optional[str] = None
    issuer: str = "http://localhost:8000"
    leeway: int = 60
    algorithm: str = "HS256"


@dataclass
class ExpirationConfig:
    """Durations in seconds."""

    ttl: int = 172800
    renewal_window: int = 3600


@dataclass
class TransportConfig:
    header_name: str = "woocommerce-session"
    scheme: str = "Session"


@dataclass
class StoreConfig:
    type: str = "memory"
    directory: Optional[str] = None
    max_sessions: int = 10000


@dataclass
class MiddlewareConfig:
    invalid_token_behavior: str = "anonymous"
    # Header set by a gateway that strips it from client requests (off by default)
    trusted_user_header: Optional[str] = None


@dataclass
class Settings:
    """
    Typed settings for storefront sessions.

    Example:
        >>> settings = Settings.load(overrides={"mode": "dev"}).validate()
        >>> policy = settings.to_policy()
    """

    mode: str = "prod"
    tokens: TokensConfig = field(default_factory=TokensConfig)
    expiration: ExpirationConfig = field(default_factory=ExpirationConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    middleware: MiddlewareConfig = field(default_factory=MiddlewareConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Settings:
        """
        Build settings from a nested dict.

        Raises:
            ConfigFault: Unknown keys or wrong shapes
        """
        sections = {
            "tokens": TokensConfig,
            "expiration": ExpirationConfig,
            "transport": TransportConfig,
            "store": StoreConfig,
            "middleware": MiddlewareConfig,
        }

        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key == "mode":
                kwargs["mode"] = str(value)
            elif key in sections:
                if not isinstance(value, dict):
                    raise ConfigFault(message=f"Config section '{key}' must be a mapping")
                try:
                    kwargs[key] = sections[key](**value)
                except TypeError as e:
                    raise ConfigFault(message=f"Invalid '{key}' config: {e}")
            else:
                raise ConfigFault(message=f"Unknown config key '{key}'")

        settings = cls(**kwargs)
        if settings.tokens.secret_key is not None:
            settings.tokens.secret_key = str(settings.tokens.secret_key)
        return settings

    @classmethod
    def load(cls, **kwargs: Any) -> Settings:
        """Load settings through ConfigLoader (same arguments)."""
        return cls.from_dict(ConfigLoader.load(**kwargs).to_dict())

    @property
    def is_dev(self) -> bool:
        return self.mode == "dev"

    @property
    def secret(self) -> str:
        """
        Effective signing secret.

        Raises:
            InsecureSecretFault: Insecure or unset secret outside dev mode
        """
        if self.tokens.secret_key in _INSECURE_SECRETS and not self.is_dev:
            raise InsecureSecretFault()
        return self.tokens.secret_key or INSECURE_DEFAULT_SECRET

    def validate(self) -> Settings:
        """
        Validate settings at startup.

        Raises:
            InsecureSecretFault: Insecure or unset secret outside dev mode
            ConfigFault: Any other invalid value
        """
        if self.mode not in ("dev", "prod"):
            raise ConfigFault(message=f"mode must be 'dev' or 'prod', got {self.mode!r}")

        if self.tokens.secret_key in _INSECURE_SECRETS:
            if not self.is_dev:
                raise InsecureSecretFault()
            if not getattr(self, "_insecure_warned", False):
                logger.warning(
                    "Using the insecure default session token secret. "
                    "Never run with it outside dev mode."
                )
                self._insecure_warned = True

        if self.tokens.algorithm != "HS256":
            raise ConfigFault(message=f"Unsupported token algorithm: {self.tokens.algorithm}")

        if not isinstance(self.tokens.leeway, int) or self.tokens.leeway < 0:
            raise ConfigFault(message="tokens.leeway must be a non-negative integer")

        if self.expiration.ttl <= 0 or not 0 <= self.expiration.renewal_window < self.expiration.ttl:
            raise ConfigFault(message="expiration requires ttl > renewal_window >= 0")

        if self.store.type not in ("memory", "file"):
            raise ConfigFault(message=f"Unsupported store type: {self.store.type}")

        if self.store.type == "file" and not self.store.directory:
            raise ConfigFault(message="store.directory is required for the file store")

        if self.middleware.invalid_token_behavior not in ("anonymous", "reject"):
            raise ConfigFault(
                message=f"Unsupported invalid_token_behavior: {self.middleware.invalid_token_behavior}"
            )

        header = self.middleware.trusted_user_header
        if header is not None and (not isinstance(header, str) or not header.strip()):
            raise ConfigFault(message="middleware.trusted_user_header must be a header name")

        return self

    def to_policy(self, hooks: Optional[TokenHooks] = None) -> SessionTokenPolicy:
        """
        Build the token session policy from validated settings.

        Raises:
            InsecureSecretFault: Insecure or unset secret outside dev mode
            ConfigFault: Any other invalid value
        """
        self.validate()

        from storefront_sessions.sessions.policy import (
            SessionTokenPolicy,
            ExpirationPolicy,
            TransportPolicy,
            TokenPolicy,
        )

        return SessionTokenPolicy(
            token=TokenPolicy(
                secret=self.secret,
                issuer=self.tokens.issuer,
                leeway=self.tokens.leeway,
                algorithm=self.tokens.algorithm,
            ),
            expiration=ExpirationPolicy(
                ttl=timedelta(seconds=self.expiration.ttl),
                renewal_window=timedelta(seconds=self.expiration.renewal_window),
            ),
            transport=TransportPolicy(
                header_name=self.transport.header_name,
                scheme=self.transport.scheme,
            ),
            hooks=hooks,
        )

    def create_store(self) -> MemoryStore | FileStore:
        from storefront_sessions.sessions.store import create_store

        return create_store(
            self.store.type,
            directory=self.store.directory,
            max_sessions=self.store.max_sessions,
        )

    def to_dict(self, redact: bool = True) -> Dict[str, Any]:
        data = asdict(self)
        if redact and data["tokens"]["secret_key"]:
            data["tokens"]["secret_key"] = "***"
        return data
