"""
Dashboard - API.

============================================================
RESPONSIBILITY
============================================================
Read-only REST view over the aggregator's latest snapshot.

ENDPOINTS:
- GET /                    service info
- GET /health              liveness and headline numbers
- GET /snapshot            global TPS, EMA, confidence, record
- GET /chains              leaderboard (relay / limit / active)
- GET /chains/{chain_id}   one chain with its recent blocks
- GET /blocks              live block feed
- GET /stats               ingestion counters
============================================================
"""

import logging
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from aggregation import Aggregator
from core.clock import ClockProtocol, SystemClock

from .block_feed import BlockFeed

logger = logging.getLogger(__name__)


API_VERSION = "1.0.0"


# ============================================================
# Response Models
# ============================================================

class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str = API_VERSION
    uptime_seconds: float = 0
    chain_count: int = 0
    data_points: int = 0
    confident: bool = False


class BlockSampleResponse(BaseModel):
    extrinsics: int
    timestamp: int
    block_time: float
    block_number: int
    weight: float = 0.0


class ChainResponse(BaseModel):
    id: str
    name: str
    para_id: int
    relay: str
    block_number: int
    extrinsics: int
    block_time: float
    timestamp: int
    weight: float
    accumulated_extrinsics: int
    tps: float
    tps_ema: float
    instant_tps: float
    peak_tps: float
    history_size: int


class ChainDetailResponse(ChainResponse):
    recent_blocks: List[BlockSampleResponse] = []


class SnapshotResponse(BaseModel):
    total_tps: float
    total_tps_ema: float
    confidence: float
    confident: bool
    observed_span_ms: int
    data_points: int
    record_tps: float
    last_timestamp: int
    chain_count: int
    chains: Optional[Dict[str, ChainResponse]] = None


class FeedBlockResponse(BaseModel):
    id: str
    chain_id: str
    name: str
    para_id: int
    relay: str
    block_number: int
    extrinsics: int
    block_time: float
    timestamp: int


# ============================================================
# FastAPI Application
# ============================================================

def create_app(
    aggregator: Aggregator,
    block_feed: Optional[BlockFeed] = None,
    clock: Optional[ClockProtocol] = None,
) -> FastAPI:
    """
    Build the API bound to one aggregator.

    Args:
        aggregator: Source of snapshots
        block_feed: Optional live block feed (enables /blocks)
        clock: Clock used for uptime and activity checks
    """
    clock = clock or SystemClock()
    config = aggregator.config
    started_at = clock.timestamp()

    app = FastAPI(
        title="Parachain TPS API",
        description="Live throughput of parachains across relay chains",
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint."""
        return {
            "service": "Parachain TPS API",
            "version": API_VERSION,
            "docs": "/docs",
        }

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        state = aggregator.get_state()
        return HealthResponse(
            status="healthy",
            timestamp=clock.format_iso(),
            uptime_seconds=clock.timestamp() - started_at,
            chain_count=state.chain_count,
            data_points=state.update_count,
            confident=state.is_confident(config.confidence_threshold),
        )

    @app.get("/snapshot", response_model=SnapshotResponse, tags=["TPS"])
    async def get_snapshot(include_chains: bool = Query(False)):
        """Global throughput snapshot."""
        state = aggregator.get_state()
        data = state.to_dict(include_chains=include_chains)
        data["confident"] = state.is_confident(config.confidence_threshold)
        return SnapshotResponse(**data)

    @app.get("/chains", response_model=List[ChainResponse], tags=["TPS"])
    async def list_chains(
        relay: Optional[str] = Query(None),
        limit: Optional[int] = Query(None, ge=1),
        active: bool = Query(False),
    ):
        """Leaderboard sorted by windowed TPS."""
        state = aggregator.get_state()
        chains = state.top_chains(relay=relay)
        if active:
            now_ms = clock.now_ms()
            chains = [
                c for c in chains
                if c.is_active(now_ms, config.active_chain_threshold_ms)
            ]
        if limit is not None:
            chains = chains[:limit]
        return [ChainResponse(**c.to_dict()) for c in chains]

    @app.get("/chains/{chain_id}", response_model=ChainDetailResponse, tags=["TPS"])
    async def get_chain(chain_id: str):
        """One chain with its retained blocks."""
        chain = aggregator.get_chain(chain_id)
        if chain is None:
            raise HTTPException(status_code=404, detail=f"Unknown chain: {chain_id}")
        return ChainDetailResponse(**chain.to_dict(include_history=True))

    @app.get("/blocks", response_model=List[FeedBlockResponse], tags=["Blocks"])
    async def get_blocks():
        """Newest blocks first."""
        if block_feed is None:
            raise HTTPException(status_code=503, detail="Block feed not enabled")
        return [FeedBlockResponse(**b.to_dict()) for b in block_feed.blocks()]

    @app.get("/stats", tags=["Diagnostics"])
    async def get_stats():
        """Ingestion counters."""
        return aggregator.get_stats()

    logger.info("Dashboard API created")
    return app
