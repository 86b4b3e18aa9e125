"""
dloopgov/ledger/gas.py

Gas price and gas limit selection for vote transactions.
"""

import logging
from typing import Dict, Optional, Tuple

from web3 import Web3

logger = logging.getLogger("dloopgov.ledger.gas")


# ============================================================================
# CONSTANTS
# ============================================================================

FALLBACK_GAS_PRICE = Web3.to_wei(20, "gwei")
GAS_LIMIT_MULTIPLIER = 1.2
MAX_GAS_LIMIT = 500_000


class GasPricer:
    """
    Chooses the fee fields and gas limit for a transaction.

    When the latest block carries a base fee the transaction is type 2
    (maxFeePerGas / maxPriorityFeePerGas). Otherwise it is a legacy
    transaction priced at the node's gas price, else FALLBACK_GAS_PRICE.
    """

    def __init__(
        self,
        fallback_price: int = FALLBACK_GAS_PRICE,
        limit_multiplier: float = GAS_LIMIT_MULTIPLIER,
        max_limit: int = MAX_GAS_LIMIT,
    ):
        self.fallback_price = fallback_price
        self.limit_multiplier = limit_multiplier
        self.max_limit = max_limit

    def eip1559_fees(self, w3: Web3) -> Optional[Tuple[int, int]]:
        """(max fee, priority fee) with max fee = 2 x base fee + tip, or None without EIP-1559 data."""
        block = w3.eth.get_block("latest")
        base_fee = block.get("baseFeePerGas")
        if base_fee is None:
            return None
        tip = int(w3.eth.max_priority_fee)
        return 2 * int(base_fee) + tip, tip

    def gas_price(self, w3: Web3) -> int:
        """Blocking. Legacy price in wei per gas unit."""
        try:
            price = int(w3.eth.gas_price)
            if price > 0:
                return price
        except Exception as e:
            logger.warning(f"Gas price query failed, using fallback: {e}")
        return self.fallback_price

    def fee_fields(self, w3: Web3) -> Dict[str, int]:
        """Blocking. Fee fields to merge into a transaction dict."""
        try:
            fees = self.eip1559_fees(w3)
            if fees and fees[0] > 0:
                max_fee, tip = fees
                return {"maxFeePerGas": max_fee, "maxPriorityFeePerGas": tip}
        except Exception as e:
            logger.debug(f"EIP-1559 fee data unavailable: {e}")
        return {"gasPrice": self.gas_price(w3)}

    def gas_limit(self, estimate: int) -> int:
        """Estimate plus headroom, capped."""
        return min(int(estimate * self.limit_multiplier), self.max_limit)
