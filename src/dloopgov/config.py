"""
dloopgov/config.py

Configuration constants and data classes for dloopgov.

Everything here can be built from environment variables with
GovernanceConfig.from_env(). Private keys are deliberately not part of
this module; see dloopgov.identity.signer.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional
import os


# ============================================================================
# CONSTANTS
# ============================================================================

# Sepolia testnet
DEFAULT_CHAIN_ID = 11155111

# AssetDAO governance contract on Sepolia
DEFAULT_ASSET_DAO_ADDRESS = "0xa87e662061237a121Ca2E83E77dA8251bc4B3529"

DEFAULT_NODE_COUNT = 5
DEFAULT_VOTING_INTERVAL = 30 * 60   # seconds between voting rounds
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_POLICY = "conservative"

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

# Public Sepolia endpoints, tried after the configured primary endpoint.
# Format: (name, url)
PUBLIC_RPC_ENDPOINTS = [
    ("PublicNode", "https://ethereum-sepolia-rpc.publicnode.com"),
    ("Sepolia.org", "https://rpc.sepolia.org"),
    ("Tenderly", "https://sepolia.gateway.tenderly.co"),
    ("RockX", "https://rpc-sepolia.rockx.com"),
]

# Per-call time budgets (seconds)
CALL_TIMEOUTS = {
    "proposal_read": 3.0,
    "proposal_count": 10.0,
    "has_voted": 2.0,
    "vote_submit": 30.0,
    "liveness": 5.0,
}


class ConfigError(Exception):
    """Exception raised for invalid configuration."""
    pass


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class ProviderSpec:
    """Static description of one RPC endpoint."""
    url: str
    name: str
    priority: int                   # lower is preferred
    max_retries: int = 3

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "name": self.name,
            "priority": self.priority,
            "max_retries": self.max_retries,
        }


def default_providers(primary_url: Optional[str] = None) -> List[ProviderSpec]:
    """
    Build the default provider list.

    The primary endpoint (if any) gets priority 1, the public endpoints
    follow in order.
    """
    specs: List[ProviderSpec] = []
    if primary_url:
        specs.append(ProviderSpec(url=primary_url, name="Primary", priority=1))
    for name, url in PUBLIC_RPC_ENDPOINTS:
        if primary_url and url.rstrip("/") == primary_url.rstrip("/"):
            continue
        specs.append(ProviderSpec(url=url, name=name, priority=len(specs) + 1))
    return specs


@dataclass
class CallTimeouts:
    """Time budgets for each kind of ledger call."""
    proposal_read: float = CALL_TIMEOUTS["proposal_read"]
    proposal_count: float = CALL_TIMEOUTS["proposal_count"]
    has_voted: float = CALL_TIMEOUTS["has_voted"]
    vote_submit: float = CALL_TIMEOUTS["vote_submit"]
    liveness: float = CALL_TIMEOUTS["liveness"]


@dataclass
class RpcConfig:
    """Settings for the provider registry and the resilience layer."""
    providers: List[ProviderSpec] = field(default_factory=default_providers)
    rate_limit_interval: float = 2.0    # minimum seconds between uses of one provider
    max_failures: int = 3               # consecutive failures before unhealthy
    backoff_base: float = 1.0
    backoff_max: float = 5.0
    max_cooldown_wait: float = 15.0     # longest wait for a cooling provider
    chain_id: Optional[int] = DEFAULT_CHAIN_ID
    timeouts: CallTimeouts = field(default_factory=CallTimeouts)


@dataclass
class DiscoveryConfig:
    """Settings for proposal discovery."""
    window_size: int = 20
    max_window: int = 50
    chunk_size: int = 5
    base_delay: float = 0.5             # before every fetch after the first
    chunk_step_delay: float = 0.2       # added per completed chunk
    chunk_pause: float = 2.0            # extra pause at chunk boundaries
    rate_limit_pause: float = 3.0       # extra pause after a rate-limited read
    count_attempts: int = 3
    proposal_attempts: int = 2
    amount_decimals: int = 18


@dataclass
class VotingConfig:
    """Settings for the multi-identity voting round."""
    policy: str = DEFAULT_POLICY
    max_proposals_per_round: int = 10
    round_budget: float = 50.0          # emergency brake, seconds
    priority_asset: str = "USDC"
    identity_delay: float = 1.5
    identity_delay_step: float = 0.5
    failure_delay: float = 1.0
    proposal_delay: float = 3.0
    has_voted_attempts: int = 2
    vote_attempts: int = 2
    receipt_timeout: float = 25.0
    min_confidence: float = 0.0


@dataclass
class GovernanceConfig:
    """Top-level configuration for a governance node."""
    asset_dao_address: str = DEFAULT_ASSET_DAO_ADDRESS
    node_count: int = DEFAULT_NODE_COUNT
    interval: float = DEFAULT_VOTING_INTERVAL
    log_level: str = DEFAULT_LOG_LEVEL
    rpc: RpcConfig = field(default_factory=RpcConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    voting: VotingConfig = field(default_factory=VotingConfig)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "GovernanceConfig":
        """
        Build configuration from environment variables.

        Recognised variables:
            ETHEREUM_RPC_URL        primary RPC endpoint
            RPC_FALLBACK_URLS       comma separated extra endpoints
            ASSET_DAO_ADDRESS       governance contract address
            CHAIN_ID                expected chain id
            VOTING_POLICY           conservative | aggressive
            NODE_COUNT              number of voting identities
            VOTING_INTERVAL_SECONDS seconds between rounds
            LOG_LEVEL               logging level name

        Raises:
            ConfigError: if a numeric variable cannot be parsed
        """
        env = os.environ if environ is None else environ

        primary = env.get("ETHEREUM_RPC_URL", "").strip() or None
        providers = default_providers(primary)
        extra = [u.strip() for u in env.get("RPC_FALLBACK_URLS", "").split(",") if u.strip()]
        known = {p.url.rstrip("/") for p in providers}
        for i, url in enumerate(extra, start=1):
            if url.rstrip("/") in known:
                continue
            providers.append(ProviderSpec(url=url, name=f"Fallback-{i}", priority=len(providers) + 1))
            known.add(url.rstrip("/"))

        rpc = RpcConfig(
            providers=providers,
            chain_id=_env_int(env, "CHAIN_ID", DEFAULT_CHAIN_ID),
        )
        voting = VotingConfig(
            policy=env.get("VOTING_POLICY", DEFAULT_POLICY).strip().lower() or DEFAULT_POLICY,
        )
        node_count = _env_int(env, "NODE_COUNT", DEFAULT_NODE_COUNT)
        if node_count < 1:
            raise ConfigError(f"NODE_COUNT must be at least 1, got {node_count}")

        return cls(
            asset_dao_address=env.get("ASSET_DAO_ADDRESS", DEFAULT_ASSET_DAO_ADDRESS).strip(),
            node_count=node_count,
            interval=float(_env_int(env, "VOTING_INTERVAL_SECONDS", DEFAULT_VOTING_INTERVAL)),
            log_level=env.get("LOG_LEVEL", DEFAULT_LOG_LEVEL).strip().upper() or DEFAULT_LOG_LEVEL,
            rpc=rpc,
            voting=voting,
        )

    def to_dict(self) -> Dict:
        """Summary suitable for logging (contains no secrets)."""
        return {
            "asset_dao_address": self.asset_dao_address,
            "chain_id": self.rpc.chain_id,
            "node_count": self.node_count,
            "interval": self.interval,
            "policy": self.voting.policy,
            "providers": [p.name for p in self.rpc.providers],
        }


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
