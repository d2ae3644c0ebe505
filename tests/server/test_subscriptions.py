"""
Subscription set and transaction index container tests.
"""

import threading

from txwatch.server.subscriptions import SubscriptionSet
from txwatch.server.tx_index import TransactionIndex


MIXED = '0xAbCdEf0123456789aBcDeF0123456789AbCdEf01'


class TestSubscriptionSet:

    def test_subscribe_normalizes(self):
        subs = SubscriptionSet()
        assert subs.subscribe(MIXED) is True
        assert subs.addresses() == [MIXED.lower()]

    def test_subscribe_idempotent_any_case(self):
        subs = SubscriptionSet()
        subs.subscribe(MIXED)
        assert subs.subscribe(MIXED.lower()) is False
        assert subs.subscribe('0x' + MIXED[2:].upper()) is False
        assert len(subs) == 1

    def test_contains_any_case(self):
        subs = SubscriptionSet([MIXED.lower()])
        assert subs.contains(MIXED)
        assert MIXED.lower() in subs
        assert not subs.contains('0x' + '00' * 20)

    def test_contains_none(self):
        subs = SubscriptionSet([MIXED])
        assert not subs.contains(None)

    def test_read_view(self):
        subs = SubscriptionSet([MIXED])
        with subs.read_view() as subscribed:
            assert subscribed(MIXED.lower())
            assert not subscribed(None)
            assert not subscribed('0x' + '00' * 20)

    def test_concurrent_subscribes(self):
        subs = SubscriptionSet()
        addresses = ['0x' + format(i, '040x') for i in range(200)]

        def worker(chunk):
            for address in chunk:
                subs.subscribe(address)

        threads = [threading.Thread(target=worker, args=(addresses[i::4],))
                   for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)
        assert len(subs) == 200

    def test_stats(self):
        subs = SubscriptionSet([MIXED])
        assert subs.stats() == {'subscribed_addresses': 1}


class TestTransactionIndex:

    def test_unknown_address_is_empty(self):
        idx = TransactionIndex()
        assert idx.read('0x' + '00' * 20) == []
        assert idx.count('0x' + '00' * 20) == 0
        # Reading does not create entries
        assert idx.stats()['indexed_addresses'] == 0

    def test_append_and_read_any_case(self, make_tx, addrs):
        idx = TransactionIndex()
        tx = make_tx(addrs.A, addrs.B)
        idx.append(MIXED, tx)
        assert idx.read(MIXED.lower()) == [tx]
        assert idx.read(MIXED) == [tx]

    def test_order_preserved(self, make_tx, addrs):
        idx = TransactionIndex()
        txs = [make_tx(addrs.A, addrs.B, nonce=n) for n in range(5)]
        for tx in txs:
            idx.append(addrs.A, tx)
        assert idx.read(addrs.A) == txs

    def test_read_returns_copy(self, make_tx, addrs):
        idx = TransactionIndex()
        idx.append(addrs.A, make_tx(addrs.A, addrs.B))
        history = idx.read(addrs.A)
        history.clear()
        assert idx.count(addrs.A) == 1

    def test_read_slice(self, make_tx, addrs):
        idx = TransactionIndex()
        txs = [make_tx(addrs.A, addrs.B, nonce=n) for n in range(5)]
        idx.append_many((addrs.A, tx) for tx in txs)
        assert idx.read(addrs.A, offset=1, limit=2) == txs[1:3]
        assert idx.read(addrs.A, offset=3) == txs[3:]
        assert idx.read(addrs.A, offset=10) == []

    def test_append_many(self, make_tx, addrs):
        idx = TransactionIndex()
        tx = make_tx(addrs.A, addrs.B)
        assert idx.append_many([(addrs.A, tx), (addrs.B.upper().replace('0X', '0x'), tx)]) == 2
        assert idx.read(addrs.A) == [tx]
        assert idx.read(addrs.B) == [tx]
        assert idx.stats() == {'indexed_addresses': 2, 'indexed_entries': 2}
