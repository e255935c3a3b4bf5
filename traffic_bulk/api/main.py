"""FastAPI main application."""
import logging
from typing import Optional, Union

import orjson
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from traffic_bulk.analysis.trends import calculate_trends, months_for_period
from traffic_bulk.config import METRICS_FILE, Config, config
from traffic_bulk.jobs.runner import TrafficRunner
from traffic_bulk.logging_conf import setup_logging
from traffic_bulk.parse.domains import normalize, parse_domain_list
from traffic_bulk.parse.models import TrafficResponse, utcnow
from traffic_bulk.store.freshness import next_refresh_date
from traffic_bulk.store.snapshots import SnapshotStore

logger = logging.getLogger(__name__)

app = FastAPI(title="Traffic Bulk Extractor API", version="0.1.0")

# API Key security (if configured)
API_KEY_HEADER = APIKeyHeader(name="X-API-KEY", auto_error=False)


def verify_api_key(api_key: Optional[str] = Depends(API_KEY_HEADER)) -> bool:
    """Verify API key if configured."""
    expected_key = config.API_KEY
    if expected_key:
        if not api_key or api_key != expected_key:
            raise HTTPException(status_code=403, detail="Invalid API key")
    return True


@app.on_event("startup")
async def startup():
    """Open the snapshot store and build the runner."""
    setup_logging()
    store = SnapshotStore(config.DATABASE_PATH)
    await store.open()
    app.state.store = store
    app.state.runner = TrafficRunner(store)


@app.on_event("shutdown")
async def shutdown():
    store = getattr(app.state, "store", None)
    if store is not None:
        await store.close()


def get_runner() -> TrafficRunner:
    runner = getattr(app.state, "runner", None)
    if runner is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return runner


def get_store() -> SnapshotStore:
    store = getattr(app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return store


class TrafficRequest(BaseModel):
    """Request model for a bulk lookup."""

    domains: Union[list[str], str] = Field(..., description="List, or newline/comma separated text")
    dry_run: bool = False
    bypass_cache: bool = False
    background: bool = False


async def _scrape_in_background(runner: TrafficRunner, domains: list[str]) -> None:
    """Scrape cache misses after the response was sent (background task)."""
    try:
        response = await runner.run(domains)
        failed = sum(1 for r in response.results if r.error)
        logger.info(f"[Background] Scraped {len(domains)} domain(s), {failed} failed")
    except Exception as e:
        logger.error(f"[Background] Scraping failed for {len(domains)} domain(s): {e}", exc_info=True)


@app.get("/health")
async def health():
    """Health check endpoint (no auth required)."""
    store = getattr(app.state, "store", None)
    return {
        "status": "ok",
        "timestamp": utcnow().isoformat(),
        "database": str(config.DATABASE_PATH),
        "store_open": store is not None,
        "next_refresh_date": next_refresh_date().isoformat(),
    }


@app.get("/metrics")
async def get_metrics(_: bool = Depends(verify_api_key)):
    """Get recent run metrics (requires API key if configured)."""
    if not METRICS_FILE.exists():
        return {"error": "No metrics available"}

    lines = []
    with open(METRICS_FILE, "rb") as f:
        for line in f:
            if line.strip():
                lines.append(orjson.loads(line))

    return {"metrics": lines[-100:]}


@app.post("/traffic", response_model=TrafficResponse)
async def lookup_traffic(
    request: TrafficRequest,
    background_tasks: BackgroundTasks,
    runner: TrafficRunner = Depends(get_runner),
    _: bool = Depends(verify_api_key),
):
    """
    Bulk traffic lookup.

    With ``background`` set, cached results come back immediately and cache
    misses are scraped after the response; poll ``/traffic/update`` for them.
    """
    try:
        if request.background and not request.dry_run and not request.bypass_cache:
            response, misses = await runner.serve_cached(request.domains)
            if misses:
                background_tasks.add_task(_scrape_in_background, runner, misses)
            return response
        return await runner.run(
            request.domains,
            dry_run=request.dry_run,
            bypass_cache=request.bypass_cache,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error processing traffic request: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Internal error: {str(e)}")


@app.get("/traffic/update", response_model=TrafficResponse)
async def poll_traffic(
    domains: str = Query(..., description="Comma separated domains"),
    runner: TrafficRunner = Depends(get_runner),
    _: bool = Depends(verify_api_key),
):
    """Latest results after background scraping; unfinished domains say "still scraping"."""
    try:
        return await runner.poll(parse_domain_list(domains))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/trends")
async def get_trends(
    domain: str = Query(...),
    period: str = Query("12m"),
    store: SnapshotStore = Depends(get_store),
    _: bool = Depends(verify_api_key),
):
    """Stored monthly history plus 1m/3m/6m/12m aggregates for one domain."""
    key = normalize(domain)
    if not key:
        raise HTTPException(status_code=400, detail="Domain parameter required")

    historical = await store.get_history(key, months_for_period(period))
    trends = calculate_trends(await store.get_history(key, months_for_period("12m")))
    return {
        "domain": key,
        "period": period,
        "historical": [s.model_dump(mode="json") for s in historical],
        "trends": [t.model_dump(mode="json") for t in trends],
    }


@app.get("/usage")
async def get_usage(
    day: Optional[str] = Query(None, description="YYYY-MM-DD, defaults to today"),
    store: SnapshotStore = Depends(get_store),
    _: bool = Depends(verify_api_key),
):
    """Daily usage aggregate."""
    usage = await store.get_usage(day)
    if usage is None:
        raise HTTPException(status_code=404, detail="No usage recorded for that day")
    return usage.model_dump(mode="json")


if __name__ == "__main__":
    import uvicorn

    Config.validate()
    uvicorn.run(app, host="0.0.0.0", port=8000)
