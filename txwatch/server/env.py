"""
Environment configuration for TxWatch.

All settings come from environment variables so the server can be run
under a process supervisor or in a container without a config file.
"""

import logging
import os
import re
from typing import List

from txwatch.lib import util


class EnvBase:
    """Wraps environment configuration with typed accessors."""

    class Error(Exception):
        pass

    def __init__(self):
        self.logger = util.class_logger(__name__, self.__class__.__name__)

    @classmethod
    def default(cls, envvar, default):
        return os.environ.get(envvar, default)

    @classmethod
    def required(cls, envvar):
        value = os.environ.get(envvar)
        if value is None:
            raise cls.Error(f'required envvar {envvar} not set')
        return value

    @classmethod
    def boolean(cls, envvar, default):
        default = 'Yes' if default else ''
        return bool(cls.default(envvar, default).strip())

    @classmethod
    def integer(cls, envvar, default):
        value = cls.default(envvar, default)
        if value is None:
            return value
        try:
            return int(value)
        except Exception:
            raise cls.Error(f'cannot convert envvar {envvar} value {value} to an integer')

    @classmethod
    def floating(cls, envvar, default):
        value = cls.default(envvar, default)
        if value is None:
            return value
        try:
            return float(value)
        except Exception:
            raise cls.Error(f'cannot convert envvar {envvar} value {value} to a number')

    @classmethod
    def list_of(cls, envvar, default=''):
        value = cls.default(envvar, default) or ''
        return [item.strip() for item in value.split(',') if item.strip()]


class Env(EnvBase):
    """Server configuration.

    DAEMON_URL            JSON-RPC endpoint of the chain node (required)
    DAEMON_TIMEOUT        seconds allowed for one RPC round trip
    POLL_INTERVAL         seconds between chain height checks
    MAX_CATCH_UP_BLOCKS   intermediate heights to index when the chain
                          advances by more than one block per tick; 0
                          indexes only the observed tip
    SUBSCRIBE_ADDRESSES   comma-separated addresses subscribed at startup
    """

    ADDRESS_RE = re.compile(r'^0x[0-9a-fA-F]{40}$')

    def __init__(self):
        super().__init__()
        self.daemon_url = self.required('DAEMON_URL')
        self.daemon_timeout = self.floating('DAEMON_TIMEOUT', 10.0)
        self.poll_interval = self.floating('POLL_INTERVAL', 1.0)
        if self.poll_interval <= 0:
            raise self.Error(f'POLL_INTERVAL must be positive, got {self.poll_interval}')
        self.max_catch_up_blocks = self.integer('MAX_CATCH_UP_BLOCKS', 0)
        if self.max_catch_up_blocks < 0:
            raise self.Error('MAX_CATCH_UP_BLOCKS cannot be negative')
        self.subscribe_addresses = self.list_of('SUBSCRIBE_ADDRESSES')
        for address in self.subscribe_addresses:
            if not self.ADDRESS_RE.match(address):
                raise self.Error(f'invalid address in SUBSCRIBE_ADDRESSES: {address}')
        self.rest_host = self.default('REST_HOST', '127.0.0.1')
        self.rest_port = self.integer('REST_PORT', 8000)
        self.log_level = self.default('LOG_LEVEL', 'info').upper()
        self.prometheus_enabled = self.boolean('PROMETHEUS_ENABLED', True)

    def log_settings(self, logger: logging.Logger = None) -> List[str]:
        """Log the effective settings and return the lines logged."""
        logger = logger or self.logger
        lines = [
            f'daemon timeout: {self.daemon_timeout}s',
            f'poll interval: {self.poll_interval}s',
            f'max catch-up blocks: {self.max_catch_up_blocks}',
            f'startup subscriptions: {len(self.subscribe_addresses)}',
            f'REST API: {self.rest_host}:{self.rest_port}',
        ]
        for line in lines:
            logger.info(line)
        return lines
