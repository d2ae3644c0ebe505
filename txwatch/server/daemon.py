"""
Chain node JSON-RPC client for TxWatch.

Talks to an Ethereum-style node over HTTP.  Every call is a single attempt
bounded by a timeout: the poller's next tick is the retry mechanism, so a
failing node never causes a retry storm here.
"""

import asyncio
import itertools
from typing import Any, Dict, List, Optional

import aiohttp

from txwatch.lib import util
from txwatch.lib.tx import Block
from txwatch.lib.util import hex_to_int, int_to_hex


class DaemonError(Exception):
    """Raised when the daemon is unreachable or returns an error."""


class ServiceRefusedError(DaemonError):
    """The daemon answered with something other than JSON (e.g. an HTTP
    error page from a proxy)."""


class Daemon:
    """Handles connections to a chain node at the given URL."""

    id_counter = itertools.count()

    def __init__(self, url: str, *, timeout: float = 10.0, max_workqueue: int = 10):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.url = url
        self.timeout = timeout
        self.workqueue_semaphore = asyncio.Semaphore(value=max_workqueue)
        self.session: Optional[aiohttp.ClientSession] = None
        self._height: Optional[int] = None

    async def __aenter__(self):
        await self.open()
        return self

    async def open(self):
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout))

    async def __aexit__(self, exc_type, exc_value, traceback):
        await self.close()

    async def close(self):
        if self.session is not None:
            await self.session.close()
            self.session = None

    def logged_url(self) -> str:
        """The daemon URL without any credentials."""
        host = self.url.partition('@')[2] if '@' in self.url else self.url
        return host.split('://')[-1]

    async def _send_data(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.session is None:
            raise DaemonError('daemon session is not open')
        async with self.workqueue_semaphore:
            async with self.session.post(self.url, json=payload) as resp:
                kind = resp.headers.get('Content-Type', '')
                if kind.startswith('application/json'):
                    return await resp.json(content_type=None)
                text = await resp.text()
                text = text.strip() or resp.reason
                raise ServiceRefusedError(f'HTTP {resp.status}: {text}')

    async def _send(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Send a payload, mapping transport failures onto DaemonError."""
        try:
            return await self._send_data(payload)
        except DaemonError:
            raise
        except asyncio.TimeoutError:
            raise DaemonError(f'timeout after {self.timeout}s calling '
                              f'{payload["method"]} on {self.logged_url()}') from None
        except aiohttp.ClientError as e:
            raise DaemonError(f'connection problem calling {payload["method"]} '
                              f'on {self.logged_url()}: {e}') from e
        except ValueError as e:
            # JSONDecodeError and UnicodeDecodeError
            raise DaemonError(f'malformed response from {self.logged_url()}: {e}') from e

    async def _send_single(self, method: str, params: Optional[List] = None):
        payload = {'jsonrpc': '2.0', 'method': method, 'id': next(self.id_counter)}
        if params:
            payload['params'] = params
        result = await self._send(payload)
        if not isinstance(result, dict):
            raise DaemonError(f'unexpected {method} response: {result!r}')
        err = result.get('error')
        if err:
            raise DaemonError(f'{method} failed: {err}')
        if 'result' not in result:
            raise DaemonError(f'{method} response has no result')
        return result['result']

    async def height(self) -> int:
        """Query the daemon for its current height."""
        result = await self._send_single('eth_blockNumber')
        try:
            self._height = hex_to_int(result)
        except (TypeError, ValueError):
            raise DaemonError(f'bad eth_blockNumber result: {result!r}') from None
        return self._height

    def cached_height(self) -> Optional[int]:
        """Return the cached daemon height.

        If the daemon has not been queried this returns None.
        """
        return self._height

    async def _get_block(self, tag: str) -> Block:
        result = await self._send_single('eth_getBlockByNumber', [tag, True])
        if result is None:
            raise DaemonError(f'block {tag} not found')
        try:
            return Block.from_json(result)
        except (KeyError, TypeError, ValueError) as e:
            raise DaemonError(f'malformed block {tag}: {e}') from e

    async def block(self, height: int) -> Block:
        """Fetch the block at the given height with full transactions."""
        return await self._get_block(int_to_hex(height))

    async def current_block(self) -> Block:
        """Fetch the block at the daemon's current height."""
        return await self.block(await self.height())
