"""
Configuration Management for SealForge
Environment-based configuration with secrets handling

Features:
- Immutable per-component config sections (network, Seal, Walrus, LLM, pipeline)
- deployed.json loading for on-chain object ids
- Secrets management (signing key, LLM token)
- Keypair discovery (env var or Sui CLI keystore)
"""

import os
import json
import base64
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum

from dotenv import load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger("Config")

BACKEND_DIR = Path(__file__).resolve().parent.parent
DEFAULT_DEPLOYED_FILE = BACKEND_DIR / "deployed.json"


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


@dataclass(frozen=True)
class CustodianInfo:
    """Public parameters of one Seal key server"""
    object_id: str
    url: str
    public_key: str  # hex-encoded X25519 public key
    name: str = ""


@dataclass(frozen=True)
class NetworkConfig:
    """Sui network configuration"""
    network: str = "testnet"
    rpc_url: str = "https://fullnode.testnet.sui.io:443"
    explorer_url: str = "https://suiscan.xyz/testnet"
    clock_object_id: str = "0x6"
    module: str = "content_marketplace"
    treasury_module: str = "agent_treasury"
    gas_budget: int = 50_000_000
    request_timeout: float = 30.0
    confirm_timeout: float = 60.0

    # Filled from deployed.json
    package_id: str = ""
    marketplace_id: str = ""
    treasury_id: Optional[str] = None


@dataclass(frozen=True)
class SealConfig:
    """Threshold encryption configuration"""
    custodians: Tuple[CustodianInfo, ...] = ()
    threshold: int = 2
    session_ttl_min: int = 10
    # Key servers reject any certificate created even 1ms in their future
    clock_skew_buffer_ms: int = 5000
    custodian_timeout: float = 15.0


@dataclass(frozen=True)
class WalrusConfig:
    """Walrus blob storage configuration"""
    publisher_url: str = "https://publisher.walrus-testnet.walrus.space"
    aggregator_url: str = "https://aggregator.walrus-testnet.walrus.space"
    epochs: int = 10
    timeout: float = 30.0


@dataclass(frozen=True)
class LLMConfig:
    """Replicate LLM configuration"""
    api_url: str = "https://api.replicate.com/v1/models"
    primary_model: str = "anthropic/claude-4.5-sonnet"
    secondary_model: str = "deepseek-ai/deepseek-r1"
    primary_label: str = "claude-4.5-sonnet via Replicate"
    poll_interval: float = 2.0
    max_wait: float = 120.0
    request_timeout: float = 30.0
    secondary_attempts: int = 3
    rate_limit_backoff: float = 12.0
    primary_max_tokens: int = 4096
    secondary_max_tokens: int = 8192


@dataclass(frozen=True)
class DataSourceConfig:
    """Public market/news endpoints used by the scanner"""
    defillama_chains_url: str = "https://api.llama.fi/v2/chains"
    defillama_yields_url: str = "https://yields.llama.fi/pools"
    defillama_protocols_url: str = "https://api.llama.fi/protocols"
    coingecko_url: str = "https://api.coingecko.com/api/v3"
    rss_feeds: Tuple[Tuple[str, str], ...] = (
        ("https://blog.sui.io/feed", "Sui Blog"),
        ("https://cointelegraph.com/rss", "CoinTelegraph"),
        ("https://decrypt.co/feed", "Decrypt"),
    )
    chain_name: str = "Sui"
    coin_id: str = "sui"
    user_agent: str = "SealForge-Agent/1.0"
    timeout: float = 10.0
    max_yield_pools: int = 25
    max_protocols: int = 20
    max_trending: int = 10
    max_rss_items: int = 10


@dataclass(frozen=True)
class PipelineConfig:
    """Producer pipeline tuning"""
    agent_name: str = "SealForge Agent v2.0"
    max_signals: int = 2
    min_confidence: int = 50
    max_confidence: int = 95
    default_confidence: int = 70
    min_price_sui: float = 0.1
    max_price_sui: float = 2.0
    default_price_sui: float = 0.25
    max_hunt_queries: int = 5
    hunt_timeout: float = 10.0
    hunt_snippet_chars: int = 3000
    scan_context_chars: int = 2000
    inter_item_delay: float = 5.0
    gas_per_listing_mist: int = 10_000_000
    publish_without_data: bool = False
    activity_log_path: str = str(BACKEND_DIR / "data" / "agent-activity.json")


@dataclass(frozen=True)
class SealForgeConfig:
    """Main application configuration"""
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = True

    network: NetworkConfig = field(default_factory=NetworkConfig)
    seal: SealConfig = field(default_factory=SealConfig)
    walrus: WalrusConfig = field(default_factory=WalrusConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    data_sources: DataSourceConfig = field(default_factory=DataSourceConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    @classmethod
    def from_env(cls, deployed_path: Optional[Path] = None) -> "SealForgeConfig":
        """Create configuration from environment variables and deployed.json"""
        load_dotenv(override=True)
        env = os.environ.get("SEALFORGE_ENV", "development").lower()

        deployed = {}
        path = Path(os.environ.get("SEALFORGE_DEPLOYED_FILE", deployed_path or DEFAULT_DEPLOYED_FILE))
        if path.exists():
            deployed = load_deployed_config(path)

        sui_network = os.environ.get("SUI_NETWORK", "testnet")
        network = NetworkConfig(
            network=sui_network,
            rpc_url=os.environ.get("SUI_RPC_URL", f"https://fullnode.{sui_network}.sui.io:443"),
            explorer_url=os.environ.get("SUI_EXPLORER_URL", f"https://suiscan.xyz/{sui_network}"),
            package_id=deployed.get("packageId", ""),
            marketplace_id=deployed.get("marketplaceId", ""),
            treasury_id=deployed.get("treasuryId"),
        )

        seal = SealConfig(
            custodians=_custodians_from_env(),
            threshold=int(os.environ.get("SEAL_THRESHOLD", "2")),
            session_ttl_min=int(os.environ.get("SEAL_SESSION_TTL_MIN", "10")),
        )

        walrus = WalrusConfig(
            publisher_url=os.environ.get("WALRUS_PUBLISHER", WalrusConfig.publisher_url),
            aggregator_url=os.environ.get("WALRUS_AGGREGATOR", WalrusConfig.aggregator_url),
            epochs=int(os.environ.get("WALRUS_EPOCHS", "10")),
        )

        pipeline = PipelineConfig(
            inter_item_delay=float(os.environ.get("SEALFORGE_ITEM_DELAY", "5")),
            publish_without_data=os.environ.get("SEALFORGE_PUBLISH_WITHOUT_DATA", "false").lower() == "true",
        )

        config = cls(
            environment=Environment(env) if env in [e.value for e in Environment] else Environment.DEVELOPMENT,
            debug=os.environ.get("DEBUG", "true").lower() == "true",
            network=network,
            seal=seal,
            walrus=walrus,
            pipeline=pipeline,
        )

        if config.environment == Environment.PRODUCTION:
            config = replace(config, debug=False)

        return config

    def require_deployed(self):
        """Abort early when the on-chain objects are unknown"""
        if not self.network.package_id or not self.network.marketplace_id:
            raise ConfigurationError(
                f"No deployed package/marketplace configured. Deploy contracts and write {DEFAULT_DEPLOYED_FILE}."
            )

    def explorer_link(self, kind: str, object_id: str) -> str:
        return f"{self.network.explorer_url}/{kind}/{object_id}"

    def to_dict(self) -> Dict:
        """Convert to dictionary (hiding secrets)"""
        def sanitize(obj):
            if isinstance(obj, dict):
                return {k: sanitize(v) for k, v in obj.items() if "secret" not in k.lower() and "token" not in k.lower()}
            elif hasattr(obj, '__dataclass_fields__'):
                return sanitize({f.name: getattr(obj, f.name) for f in fields(obj)})
            elif isinstance(obj, (list, tuple)):
                return [sanitize(v) for v in obj]
            elif isinstance(obj, Enum):
                return obj.value
            else:
                return obj

        return sanitize(self)


def _custodians_from_env() -> Tuple[CustodianInfo, ...]:
    """SEAL_KEY_SERVERS is a JSON list of {object_id, url, public_key}"""
    raw = os.environ.get("SEAL_KEY_SERVERS")
    if not raw:
        return ()
    try:
        entries = json.loads(raw)
        return tuple(
            CustodianInfo(
                object_id=e["object_id"],
                url=e["url"],
                public_key=e.get("public_key", ""),
                name=e.get("name", ""),
            )
            for e in entries
        )
    except (ValueError, KeyError, TypeError) as e:
        raise ConfigurationError(f"Invalid SEAL_KEY_SERVERS: {e}")


# ============================================
# DEPLOYED OBJECTS
# ============================================

def load_deployed_config(path: Path = DEFAULT_DEPLOYED_FILE) -> Dict[str, Any]:
    if not Path(path).exists():
        raise ConfigurationError(f"No deployed.json found at {path}. Deploy contracts first.")
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def save_deployed_config(deployed: Dict[str, Any], path: Path = DEFAULT_DEPLOYED_FILE):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(deployed, f, indent=2)
    logger.info(f"Saved deployed config to {path}")


# ============================================
# SECRETS MANAGEMENT
# ============================================

class SecretsManager:
    """
    Holds the agent's secrets.
    Values are read once from the environment and never logged.
    """

    SECRET_KEYS = [
        "SUI_PRIVATE_KEY",  # NEVER log this!
        "REPLICATE_API_TOKEN",
        "SENTRY_DSN",
    ]

    def __init__(self, environ: Optional[Dict[str, str]] = None):
        self._secrets: Dict[str, str] = {}
        self._load_from_env(environ if environ is not None else os.environ)

    def _load_from_env(self, environ):
        for key in self.SECRET_KEYS:
            value = environ.get(key)
            if value:
                self._secrets[key] = value

    def get(self, key: str, default: str = None) -> Optional[str]:
        return self._secrets.get(key, default)

    def require(self, key: str) -> str:
        value = self._secrets.get(key)
        if not value:
            raise ConfigurationError(f"{key} not set in environment")
        return value

    def set(self, key: str, value: str):
        """Set a secret value (runtime only)"""
        self._secrets[key] = value

    def has(self, key: str) -> bool:
        return key in self._secrets


def load_secret_key_bytes(secrets: SecretsManager, home: Optional[str] = None) -> bytes:
    """
    Find the agent's Ed25519 seed.

    1. SUI_PRIVATE_KEY env var (base64, 32 bytes or flag byte + 32 bytes)
    2. Sui CLI keystore, most recently created key
    """
    env_key = secrets.get("SUI_PRIVATE_KEY")
    if env_key:
        raw = base64.b64decode(env_key)
        return raw[-32:]

    home = home or os.environ.get("USERPROFILE") or os.environ.get("HOME") or ""
    keystore_path = Path(home) / ".sui" / "sui_config" / "sui.keystore"
    if keystore_path.exists():
        with open(keystore_path, "r", encoding="utf-8") as f:
            keystore: List[str] = json.load(f)
        if keystore:
            raw = base64.b64decode(keystore[-1])
            # Strip the scheme flag byte (0 = ed25519)
            return raw[1:]

    raise ConfigurationError("No keypair found. Set SUI_PRIVATE_KEY env var or have a Sui CLI keystore.")


# ============================================
# LAZY GLOBALS (CLI entry points only)
# ============================================

_config: Optional[SealForgeConfig] = None
_secrets: Optional[SecretsManager] = None


def get_config() -> SealForgeConfig:
    global _config
    if _config is None:
        _config = SealForgeConfig.from_env()
        logger.info(f"Configuration loaded for environment: {_config.environment.value}")
    return _config


def get_secrets() -> SecretsManager:
    global _secrets
    if _secrets is None:
        load_dotenv(override=True)
        _secrets = SecretsManager()
    return _secrets


def reload_config():
    global _config
    _config = SealForgeConfig.from_env()
    logger.info("Configuration reloaded")
