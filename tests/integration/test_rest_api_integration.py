#!/usr/bin/env python3
"""
TxWatch REST API Integration Test Suite

Tests the REST API endpoints against a running TxWatch instance.
Skipped unless TXWATCH_REST_URL is set.

Usage:
  TXWATCH_REST_URL=http://localhost:8000 pytest tests/integration/test_rest_api_integration.py -v

  # With an API key:
  TXWATCH_REST_URL=http://localhost:8000 TXWATCH_API_KEY=mykey pytest tests/integration -v
"""

import os
import pytest

try:
    import httpx
    HAS_HTTPX = True
except ImportError:
    HAS_HTTPX = False

# Configuration
BASE_URL = os.environ.get('TXWATCH_REST_URL', '')
API_KEY = os.environ.get('TXWATCH_API_KEY', '')

# An address with no history on any chain
ZERO_ADDRESS = '0x' + '0' * 40

pytestmark = [
    pytest.mark.skipif(not HAS_HTTPX, reason='httpx not installed'),
    pytest.mark.skipif(not BASE_URL, reason='TXWATCH_REST_URL not set'),
]


@pytest.fixture
def headers():
    h = {'Accept': 'application/json'}
    if API_KEY:
        h['x-api-key'] = API_KEY
    return h


@pytest.fixture
def client(headers):
    with httpx.Client(base_url=BASE_URL, headers=headers, timeout=15.0) as c:
        yield c


# ============================================================
# Health & Info
# ============================================================

class TestHealth:
    def test_health(self, client):
        r = client.get('/health')
        assert r.status_code == 200
        data = r.json()
        assert data['status'] in ('healthy', 'degraded')
        assert 'uptime_seconds' in data

    def test_ready(self, client):
        r = client.get('/health/ready')
        assert r.status_code == 200
        assert r.json()['height'] > 0

    def test_status(self, client):
        r = client.get('/status')
        assert r.status_code == 200
        data = r.json()
        assert 'subscribed_addresses' in data
        assert 'height' in data

    def test_metrics(self, client):
        r = client.get('/metrics')
        assert r.status_code in (200, 404)

    def test_docs_available(self, client):
        r = client.get('/docs')
        assert r.status_code == 200


# ============================================================
# Addresses
# ============================================================

class TestAddresses:
    def test_subscribe_is_idempotent(self, client):
        first = client.post(f'/subscribe/{ZERO_ADDRESS}')
        assert first.status_code == 200
        second = client.post(f'/subscribe/{ZERO_ADDRESS.upper().replace("0X", "0x")}')
        assert second.status_code == 200
        assert second.json()['created'] is False

    def test_transactions(self, client):
        r = client.get(f'/address/{ZERO_ADDRESS}/transactions')
        assert r.status_code == 200
        data = r.json()
        assert data['address'] == ZERO_ADDRESS
        assert data['count'] == len(data['transactions'])


# ============================================================
# Blocks
# ============================================================

class TestBlocks:
    def test_current_block(self, client):
        r = client.get('/block/current')
        assert r.status_code in (200, 502)
        if r.status_code == 200:
            assert r.json()['number'].startswith('0x')


# ============================================================
# Error Handling
# ============================================================

class TestErrorHandling:
    def test_invalid_address(self, client):
        r = client.get('/address/not_an_address/transactions')
        assert r.status_code == 422

    def test_nonexistent_route(self, client):
        r = client.get('/nonexistent/route')
        assert r.status_code == 404


# ============================================================
# Standalone runner
# ============================================================

if __name__ == '__main__':
    pytest.main([__file__, '-v', '--tb=short'])
