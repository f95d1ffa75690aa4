"""
Normalized view of an on-chain transaction.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Optional

from web3 import Web3


def _hex(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    return str(value)


@dataclass
class ChainTransaction:
    """Transaction fields the engine cares about."""

    hash: str
    from_address: str
    to_address: Optional[str]
    value_wei: int = 0
    block_number: Optional[int] = None

    @property
    def value_eth(self) -> Decimal:
        # from_wei returns a plain int 0 for zero values
        return Decimal(Web3.from_wei(self.value_wei, "ether"))

    @classmethod
    def from_web3(cls, tx: Mapping[str, Any]) -> "ChainTransaction":
        """Build from a web3 transaction dict (AttributeDict)."""
        return cls(
            hash=_hex(tx.get("hash")),
            from_address=tx.get("from") or "",
            to_address=tx.get("to"),
            value_wei=int(tx.get("value") or 0),
            block_number=tx.get("blockNumber"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Template-friendly view with the value in ETH."""
        return {
            "hash": self.hash,
            "from": self.from_address,
            "to": self.to_address or "",
            "value": format(self.value_eth.normalize(), "f"),
            "value_wei": self.value_wei,
            "block_number": self.block_number,
        }
