"""
FastAPI REST API for TxWatch

This module provides a thin HTTP layer over the engine: subscribing
addresses, reading their recorded transactions, and querying the chain's
current block.  The engine is passed in explicitly via create_app().
"""

from typing import Optional, Dict, Any, List
import os
import time
from dataclasses import dataclass

from fastapi import FastAPI, HTTPException, Query, Path, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from txwatch import version_short
from txwatch.server.daemon import DaemonError

ADDRESS_PATTERN = r'^0x[0-9a-fA-F]{40}$'


@dataclass
class _TokenBucket:
    tokens: float
    last_ts: float


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class HealthResponse(BaseModel):
    status: str
    uptime_seconds: float
    poller: str
    sync_height: Optional[int] = None


class SubscribeResponse(BaseModel):
    address: str
    subscribed: bool
    created: bool


class TransactionsResponse(BaseModel):
    address: str
    count: int
    transactions: List[Dict[str, Any]]


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_controller(request: Request):
    controller = getattr(request.app.state, 'controller', None)
    if controller is None:
        raise HTTPException(status_code=503, detail='Engine not available')
    return controller


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, '').strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f'{name} must be an integer, got {raw!r}') from None


def _security_settings():
    """Read and validate the security settings once, at app creation.

    Returns (allowed_origins, limit_per_minute, burst).
    """
    env_name = os.getenv('TXWATCH_ENV', os.getenv('ENV', 'dev')).strip().lower()
    is_prod = env_name == 'prod'

    allowed_origins_raw = os.getenv('ALLOWED_ORIGINS', '').strip()
    allowed_origins = [o.strip() for o in allowed_origins_raw.split(',') if o.strip()]
    if is_prod and not allowed_origins:
        raise RuntimeError('ALLOWED_ORIGINS must be set in production (TXWATCH_ENV=prod)')

    require_key_prod = os.getenv('REST_REQUIRE_API_KEY_IN_PROD', '1').strip() not in ('0', 'false', 'no')
    if is_prod and require_key_prod and not os.getenv('REST_API_KEY', '').strip():
        raise RuntimeError('REST_API_KEY must be set in production (or set REST_REQUIRE_API_KEY_IN_PROD=0)')

    limit_per_minute = _env_int('REST_RATE_LIMIT_PER_MIN', 600)
    burst = _env_int('REST_RATE_LIMIT_BURST', limit_per_minute)
    if limit_per_minute > 0 and burst < 1:
        raise RuntimeError('REST_RATE_LIMIT_BURST must be at least 1')
    return allowed_origins, limit_per_minute, burst


def _check_api_key(x_api_key: Optional[str]):
    required_key = os.getenv('REST_API_KEY', '').strip()
    if not required_key:
        return
    if not x_api_key or x_api_key != required_key:
        raise HTTPException(status_code=401, detail='Unauthorized')


class _RateLimiter:
    """Per-client token buckets.

    A bucket that has refilled to ``burst`` holds no state worth keeping,
    so such buckets are dropped every ``prune_interval`` seconds.
    """

    def __init__(self, limit_per_minute: int, burst: int,
                 prune_interval: float = 60.0, clock=time.monotonic):
        self.limit_per_minute = limit_per_minute
        self.burst = float(burst)
        self.refill_per_sec = limit_per_minute / 60.0
        self.prune_interval = prune_interval
        self.clock = clock
        self.buckets: Dict[str, _TokenBucket] = {}
        self._last_prune = clock()

    def check(self, request: Request):
        if self.limit_per_minute <= 0:
            return
        now = self.clock()
        if now - self._last_prune >= self.prune_interval:
            self.prune(now)

        client_host = request.client.host if request.client else 'unknown'
        bucket = self.buckets.get(client_host)
        if bucket is None:
            bucket = _TokenBucket(tokens=self.burst, last_ts=now)
            self.buckets[client_host] = bucket

        bucket.tokens = self._level(bucket, now)
        bucket.last_ts = now

        if bucket.tokens < 1.0:
            raise HTTPException(status_code=429, detail='Rate limit exceeded')
        bucket.tokens -= 1.0

    def prune(self, now: float):
        idle = [host for host, bucket in self.buckets.items()
                if self._level(bucket, now) >= self.burst]
        for host in idle:
            del self.buckets[host]
        self._last_prune = now

    def _level(self, bucket: _TokenBucket, now: float) -> float:
        elapsed = max(0.0, now - bucket.last_ts)
        return min(self.burst, bucket.tokens + elapsed * self.refill_per_sec)


# =============================================================================
# APP FACTORY
# =============================================================================

def create_app(controller=None) -> FastAPI:
    """Create the FastAPI app serving the given engine."""
    allowed_origins, limit_per_minute, burst = _security_settings()

    app = FastAPI(
        title="TxWatch REST API",
        description="Address transaction history for subscribed addresses",
        version=version_short,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.controller = controller
    app.state.start_time = time.time()
    app.state.rate_limiter = rate_limiter = _RateLimiter(limit_per_minute, burst)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def _security_middleware(request: Request, call_next):
        if request.url.path.startswith('/health'):
            return await call_next(request)
        # Exceptions raised in middleware bypass FastAPI's handlers
        try:
            _check_api_key(request.headers.get('x-api-key'))
            rate_limiter.check(request)
        except HTTPException as e:
            return JSONResponse(status_code=e.status_code, content={'detail': e.detail})
        return await call_next(request)

    # =========================================================================
    # HEALTH & STATUS ENDPOINTS
    # =========================================================================

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(request: Request):
        """Check API health and poller state."""
        uptime = time.time() - request.app.state.start_time
        controller = request.app.state.controller
        running = bool(controller and controller.running)
        return HealthResponse(
            status="healthy" if running else "degraded",
            uptime_seconds=round(uptime, 2),
            poller="running" if running else "stopped",
            sync_height=controller.poller.height if controller else None,
        )

    @app.get("/health/live", tags=["Health"])
    async def health_live():
        return {"status": "alive"}

    @app.get("/health/ready", tags=["Health"])
    async def health_ready(request: Request):
        controller = request.app.state.controller
        if not controller or not controller.running:
            raise HTTPException(status_code=503, detail="Not ready")
        return {"status": "ready", "height": controller.poller.height}

    @app.get("/status", tags=["Health"])
    async def get_status(controller=Depends(get_controller)):
        """Get detailed engine status."""
        status = {
            "api_version": version_short,
            "uptime_seconds": round(time.time() - app.state.start_time, 2),
        }
        status.update(controller.stats())
        return status

    @app.get("/metrics", response_class=PlainTextResponse, tags=["Health"])
    async def get_metrics(controller=Depends(get_controller)):
        """Prometheus text format metrics."""
        if not controller.metrics.enabled:
            raise HTTPException(status_code=404, detail="Metrics disabled")
        return PlainTextResponse(controller.metrics.generate_metrics())

    # =========================================================================
    # SUBSCRIPTIONS & TRANSACTIONS
    # =========================================================================

    @app.post("/subscribe/{address}", response_model=SubscribeResponse,
              tags=["Addresses"])
    async def subscribe(address: str = Path(..., pattern=ADDRESS_PATTERN),
                        controller=Depends(get_controller)):
        """Subscribe an address's inbound/outbound transactions."""
        created = controller.subscribe(address)
        return SubscribeResponse(address=address.lower(), subscribed=True,
                                 created=created)

    @app.get("/address/{address}/transactions", response_model=TransactionsResponse,
             tags=["Addresses"])
    async def get_transactions(
        address: str = Path(..., pattern=ADDRESS_PATTERN),
        offset: int = Query(default=0, ge=0),
        limit: Optional[int] = Query(default=None, ge=1, le=10000),
        controller=Depends(get_controller),
    ):
        """Get an address's recorded transactions, oldest first."""
        txs = controller.get_transactions(address, offset=offset, limit=limit)
        return TransactionsResponse(
            address=address.lower(),
            count=len(txs),
            transactions=[tx.to_dict() for tx in txs],
        )

    # =========================================================================
    # BLOCKS
    # =========================================================================

    @app.get("/block/current", tags=["Blocks"])
    async def get_current_block(controller=Depends(get_controller)):
        """Get the chain's current block from the daemon."""
        try:
            block = await controller.get_current_block()
        except DaemonError as e:
            raise HTTPException(status_code=502, detail=f"Daemon error: {e}")
        return block.to_dict()

    return app
