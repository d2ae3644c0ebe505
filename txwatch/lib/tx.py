"""
Transaction and block types for TxWatch.

Blocks and transactions are built from the JSON objects returned by
eth_getBlockByNumber.  A Transaction keeps the daemon's object verbatim in
``fields`` so callers see exactly what the chain reported; the typed
attributes are only what the indexer needs to route it.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from txwatch.lib.util import hex_to_int


def normalize_address(address: Optional[str]) -> Optional[str]:
    """Return the canonical (lower-case) form of an address.

    Addresses are case-insensitive hex strings; EIP-55 checksummed and
    lower-case forms of the same address normalize identically.  Raises
    ValueError for anything that is not a string.
    """
    if address is None:
        return None
    if not isinstance(address, str):
        raise ValueError(f'address must be a string, got {address!r}')
    return address.lower()


@dataclass(frozen=True)
class Transaction:
    """An immutable transaction record.

    ``to_address`` is None for contract-creation transactions.
    """
    hash: str
    from_address: str
    to_address: Optional[str]
    block_number: Optional[int] = None
    tx_index: Optional[int] = None
    fields: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_json(cls, obj: Dict[str, Any]) -> 'Transaction':
        """Build from a JSON-RPC transaction object."""
        try:
            from_address = obj['from']
        except (KeyError, TypeError):
            raise ValueError(f'transaction has no sender: {obj!r}') from None
        return cls(
            hash=obj.get('hash', ''),
            from_address=normalize_address(from_address),
            to_address=normalize_address(obj.get('to')),
            block_number=hex_to_int(obj.get('blockNumber')),
            tx_index=hex_to_int(obj.get('transactionIndex')),
            fields=dict(obj),
        )

    def to_dict(self) -> Dict[str, Any]:
        """The transaction as reported by the daemon."""
        if self.fields:
            return dict(self.fields)
        return {
            'hash': self.hash,
            'from': self.from_address,
            'to': self.to_address,
            'blockNumber': hex(self.block_number) if self.block_number is not None else None,
            'transactionIndex': hex(self.tx_index) if self.tx_index is not None else None,
        }

    @property
    def is_contract_creation(self) -> bool:
        return self.to_address is None


@dataclass
class Block:
    """A block and its ordered transactions.  Not retained after indexing."""
    height: int
    hash: Optional[str] = None
    parent_hash: Optional[str] = None
    timestamp: Optional[int] = None
    transactions: List[Transaction] = field(default_factory=list)
    fields: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_json(cls, obj: Dict[str, Any]) -> 'Block':
        """Build from an eth_getBlockByNumber result with full transactions.

        Transactions given only as hashes (a request made with
        full_transactions=false) cannot be routed and are rejected.
        """
        if not isinstance(obj, dict):
            raise ValueError(f'block is not an object: {obj!r}')
        txs = []
        for item in obj.get('transactions') or []:
            if not isinstance(item, dict):
                raise ValueError('block transactions must be full objects')
            txs.append(Transaction.from_json(item))
        return cls(
            height=hex_to_int(obj.get('number')),
            hash=obj.get('hash'),
            parent_hash=obj.get('parentHash'),
            timestamp=hex_to_int(obj.get('timestamp')),
            transactions=txs,
            fields=dict(obj),
        )

    def to_dict(self) -> Dict[str, Any]:
        result = {k: v for k, v in self.fields.items() if k != 'transactions'}
        result.update({
            'number': hex(self.height) if self.height is not None else None,
            'hash': self.hash,
            'parentHash': self.parent_hash,
            'transactions': [tx.to_dict() for tx in self.transactions],
        })
        return result

    def __len__(self):
        return len(self.transactions)
