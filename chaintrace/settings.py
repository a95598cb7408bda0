from __future__ import annotations
from dataclasses import dataclass

# ====== App identity (used by API + report data) ======
# NOTE: Name/version are intentionally sourced from this file.
APP_NAME: str = "chaintrace"
APP_VERSION: str = "0.4.0"
AUTHOR_NAME: str = "chaintrace contributors"

@dataclass
class Settings:
    # Network
    provider_timeout: float = 10.0      # seconds per provider attempt
    osint_timeout: float = 5.0          # seconds per URL re-validation
    retry_backoff: float = 1.0          # pause before the single address-txs retry
    request_pacing: float = 0.05        # pause between sibling items during expansion
    address_tx_page: int = 50           # largest tx page fetched (and cached) per address
    # Traversal budgets
    initial_depth: int = 1
    deep_trace_depth: int = 2
    # Transactions taken per address expansion (root forced > forced > default)
    root_forced_tx_limit: int = 25
    forced_tx_limit: int = 12
    default_tx_limit: int = 8
    # Inputs/outputs taken per transaction expansion
    root_forced_io_limit: int = 15
    forced_io_limit: int = 8
    default_io_limit: int = 5
    # Risk indicator thresholds
    high_value_coins: float = 100.0
    high_fee_per_byte: float = 100.0
    # OSINT sweep alongside the root expansion
    osint_enabled: bool = True
