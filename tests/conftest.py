"""
Pytest configuration for TxWatch tests.

Puts the project root on the Python path and provides an in-memory
daemon so the engine can be driven without a chain node.
"""

import hashlib
import sys
import os

import pytest

# Add the project root directory to Python path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from txwatch.lib.tx import Block, Transaction  # noqa: E402


def block_hash(height: int) -> str:
    return '0x' + format(height, '064x')


class FakeDaemon:
    """A chain node held in memory.

    ``chain_height`` is what height() reports.  Set ``height_error`` or
    add to ``block_errors`` to simulate failures.  Blocks not added with
    add_block() are empty and chain onto their predecessor.
    """

    def __init__(self, chain_height: int = 100):
        self.chain_height = chain_height
        self.blocks = {}
        self.height_error = None
        self.block_errors = {}
        self.height_calls = 0
        self.block_calls = []
        self.opened = False
        self.closed = False

    async def open(self):
        self.opened = True

    async def close(self):
        self.closed = True

    async def height(self):
        self.height_calls += 1
        if self.height_error is not None:
            raise self.height_error
        return self.chain_height

    def cached_height(self):
        return self.chain_height

    async def block(self, height):
        self.block_calls.append(height)
        if height in self.block_errors:
            raise self.block_errors[height]
        if height in self.blocks:
            return self.blocks[height]
        return Block(height=height, hash=block_hash(height),
                     parent_hash=block_hash(height - 1))

    async def current_block(self):
        return await self.block(await self.height())

    def add_block(self, height, txs, parent_hash=None):
        block = Block(height=height, hash=block_hash(height),
                      parent_hash=parent_hash or block_hash(height - 1),
                      transactions=list(txs))
        self.blocks[height] = block
        return block


def tx_json(from_addr, to_addr, nonce=0, height=None, index=0):
    obj = {
        'hash': '0x' + hashlib.sha256(repr((from_addr, to_addr, nonce, height)).encode()).hexdigest(),
        'from': from_addr,
        'to': to_addr,
        'nonce': hex(nonce),
        'value': '0xde0b6b3a7640000',
        'input': '0x',
        'transactionIndex': hex(index),
    }
    if height is not None:
        obj['blockNumber'] = hex(height)
    return obj


@pytest.fixture
def daemon():
    return FakeDaemon()


@pytest.fixture
def make_tx():
    """Factory building a Transaction from sender, recipient and nonce."""
    def make(from_addr, to_addr, nonce=0, height=None, index=0):
        return Transaction.from_json(tx_json(from_addr, to_addr, nonce, height, index))
    return make


# Well-known test addresses
ALICE = '0x' + 'a1' * 20
BOB = '0x' + 'b2' * 20
CAROL = '0x' + 'c3' * 20
DAVE = '0x' + 'd4' * 20


@pytest.fixture
def addrs():
    class Addrs:
        A = ALICE
        B = BOB
        C = CAROL
        D = DAVE
    return Addrs
