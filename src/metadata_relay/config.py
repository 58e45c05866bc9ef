"""
Configuration management for the metadata relay worker
"""

import os
from typing import Dict, List, Optional
from dataclasses import dataclass, field
from pathlib import Path
from dotenv import load_dotenv

from .errors import ConfigError
from .utils import validate_url, validate_felt


@dataclass
class ChainConfig:
    """Registry location for a supported chain"""
    registry_url: str
    registry_world_address: str


CHAIN_REGISTRY: Dict[str, ChainConfig] = {
    "SN_MAIN": ChainConfig(
        registry_url="https://api.cartridge.gg/x/arcade-mainnet/torii",
        registry_world_address="0x25c70b1422f7ee0bddb6a52b8d3c2f7251cc9e5b5b0401d5db18a37ca4e1f36",
    ),
    "SN_SEPOLIA": ChainConfig(
        registry_url="https://api.cartridge.gg/x/arcade-sepolia/torii",
        registry_world_address="0x3907eb729c36d0e7e35b1c5570bb90e2a2fb4b7b7b97bae7b1c4b029b2a72a1",
    ),
}

# Projects skipped when IGNORED_PROJECTS is not set
DEFAULT_IGNORED_PROJECTS: List[str] = [
    "zkube-budo-mainnet",
    "evolute-duel-arcade",
    "jokersofneondev",
    "jokersofneon",
    "budokan-mainnet-2",
    "ponziland-tourney-2-2",
]


@dataclass
class Config:
    """Main configuration class"""

    # Required fields first
    account_address: str
    account_private_key: str
    marketplace_address: str

    # Chain
    chain_id: str = "SN_MAIN"
    rpc_url: Optional[str] = None

    # Endpoints
    marketplace_url: str = "https://api.cartridge.gg/x/marketplace-mainnet/torii"
    registry_url: Optional[str] = None
    registry_world_address: Optional[str] = None
    indexer_url_template: str = "https://api.cartridge.gg/x/{project}/torii"

    # Fetching
    token_fetch_batch_size: int = 5000
    batch_shrink_step: int = 500
    max_response_bytes: int = 16 * 1024 * 1024

    # Processing / publishing
    message_batch_size: int = 500
    processing_concurrency: int = 10  # tokens in flight per project
    project_concurrency: int = 0  # 0 means every project at once
    processed_cache_size: int = 1_000_000
    processed_cache_ttl: int = 86400  # seconds before the marketplace is asked again

    # Retry settings
    retry_attempts: int = 3  # retries after the first attempt
    retry_delay: float = 5.0  # seconds
    publish_retry_attempts: int = 5  # retries after the first send
    publish_retry_delay: float = 5.0  # seconds
    fetch_interval: int = 60  # minutes
    timeout: int = 30

    ignored_projects: List[str] = field(default_factory=list)

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables"""

        def get_list(key_name: str) -> List[str]:
            """Get a comma-separated list"""
            value = os.getenv(key_name, "")
            if not value:
                return []
            return [v.strip() for v in value.split(",") if v.strip()]

        def get_int(key_name: str, default: int) -> int:
            raw = os.getenv(key_name)
            if raw is None or raw.strip() == "":
                return default
            try:
                return int(raw)
            except ValueError:
                raise ConfigError(f"{key_name} must be an integer, got {raw!r}")

        def get_seconds(key_name: str, default: float) -> float:
            """KEY_SECONDS in seconds, else the legacy KEY in milliseconds"""
            if os.getenv(f"{key_name}_SECONDS", "").strip():
                return get_float(f"{key_name}_SECONDS", default)
            if os.getenv(key_name, "").strip():
                return get_float(key_name, default * 1000) / 1000
            return default

        def get_float(key_name: str, default: float) -> float:
            raw = os.getenv(key_name)
            if raw is None or raw.strip() == "":
                return default
            try:
                return float(raw)
            except ValueError:
                raise ConfigError(f"{key_name} must be a number, got {raw!r}")

        config = cls(
            account_address=os.getenv("ACCOUNT_ADDRESS", ""),
            account_private_key=os.getenv("ACCOUNT_PRIVATE_KEY", ""),
            marketplace_address=os.getenv("MARKETPLACE_ADDRESS", ""),
            chain_id=os.getenv("CHAIN_ID", "SN_MAIN").strip().upper(),
            rpc_url=os.getenv("RPC_URL"),
            marketplace_url=os.getenv(
                "MARKETPLACE_TORII_URL",
                "https://api.cartridge.gg/x/marketplace-mainnet/torii",
            ),
            registry_url=os.getenv("REGISTRY_URL"),
            registry_world_address=os.getenv("REGISTRY_WORLD_ADDRESS"),
            indexer_url_template=os.getenv(
                "INDEXER_URL_TEMPLATE", "https://api.cartridge.gg/x/{project}/torii"
            ),
            token_fetch_batch_size=get_int("TOKEN_FETCH_BATCH_SIZE", 5000),
            batch_shrink_step=get_int("BATCH_SHRINK_STEP", 500),
            max_response_bytes=get_int("MAX_RESPONSE_BYTES", 16 * 1024 * 1024),
            message_batch_size=get_int("MESSAGE_BATCH_SIZE", 500),
            processing_concurrency=get_int("BATCH_SIZE", 10),
            project_concurrency=get_int("PROJECT_CONCURRENCY", 0),
            processed_cache_size=get_int("PROCESSED_CACHE_SIZE", 1_000_000),
            processed_cache_ttl=get_int("PROCESSED_CACHE_TTL", 86400),
            retry_attempts=get_int("RETRY_ATTEMPTS", 3),
            retry_delay=get_seconds("RETRY_DELAY", 5.0),
            publish_retry_attempts=get_int("PUBLISH_RETRY_ATTEMPTS", 5),
            publish_retry_delay=get_seconds("PUBLISH_RETRY_DELAY", 5.0),
            fetch_interval=get_int("FETCH_INTERVAL", 60),
            timeout=get_int("TIMEOUT", 30),
            ignored_projects=get_list("IGNORED_PROJECTS"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_json=os.getenv("LOG_JSON", "false").lower() in ("1", "true", "yes"),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Raise ConfigError on unusable settings"""
        missing = [
            name
            for name, value in (
                ("ACCOUNT_ADDRESS", self.account_address),
                ("ACCOUNT_PRIVATE_KEY", self.account_private_key),
                ("MARKETPLACE_ADDRESS", self.marketplace_address),
            )
            if not value
        ]
        if missing:
            raise ConfigError(f"Missing required settings: {', '.join(missing)}")

        if self.chain_id not in CHAIN_REGISTRY:
            raise ConfigError(
                f"Unsupported CHAIN_ID {self.chain_id!r}, expected one of {sorted(CHAIN_REGISTRY)}"
            )
        for name, value in (
            ("ACCOUNT_ADDRESS", self.account_address),
            ("MARKETPLACE_ADDRESS", self.marketplace_address),
        ):
            if not validate_felt(value):
                raise ConfigError(f"{name} is not a valid hex address: {value!r}")

        if not validate_url(self.marketplace_url):
            raise ConfigError(f"MARKETPLACE_TORII_URL is not a valid URL: {self.marketplace_url!r}")
        if "{project}" not in self.indexer_url_template:
            raise ConfigError("INDEXER_URL_TEMPLATE must contain a {project} placeholder")

        positives = {
            "TOKEN_FETCH_BATCH_SIZE": self.token_fetch_batch_size,
            "BATCH_SHRINK_STEP": self.batch_shrink_step,
            "MESSAGE_BATCH_SIZE": self.message_batch_size,
            "BATCH_SIZE": self.processing_concurrency,
            "FETCH_INTERVAL": self.fetch_interval,
            "TIMEOUT": self.timeout,
            "PROCESSED_CACHE_SIZE": self.processed_cache_size,
            "PROCESSED_CACHE_TTL": self.processed_cache_ttl,
        }
        for name, value in positives.items():
            if value <= 0:
                raise ConfigError(f"{name} must be positive, got {value}")
        non_negatives = {
            "RETRY_ATTEMPTS": self.retry_attempts,
            "RETRY_DELAY_SECONDS": self.retry_delay,
            "PUBLISH_RETRY_ATTEMPTS": self.publish_retry_attempts,
            "PUBLISH_RETRY_DELAY_SECONDS": self.publish_retry_delay,
            "PROJECT_CONCURRENCY": self.project_concurrency,
        }
        for name, value in non_negatives.items():
            if value < 0:
                raise ConfigError(f"{name} must not be negative, got {value}")

    @property
    def effective_ignored_projects(self) -> List[str]:
        """Configured ignore list, or the built-in default when unset"""
        return self.ignored_projects or list(DEFAULT_IGNORED_PROJECTS)

    @property
    def registry(self) -> ChainConfig:
        """Registry endpoint for the configured chain, with overrides applied"""
        chain = CHAIN_REGISTRY[self.chain_id]
        return ChainConfig(
            registry_url=self.registry_url or chain.registry_url,
            registry_world_address=self.registry_world_address or chain.registry_world_address,
        )

    def indexer_url(self, project: str) -> str:
        """Indexer base URL for a project"""
        return self.indexer_url_template.format(project=project)


def load_config(env_file: Optional[Path] = None) -> Config:
    """Load .env (project root by default) and build the config"""
    env_path = env_file or Path(__file__).parent.parent.parent / ".env"
    load_dotenv(env_path)
    return Config.from_env()
