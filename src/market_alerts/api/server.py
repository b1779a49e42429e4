"""
FastAPI server exposing cached alerts, scanner control, universe management
and the market assistant.
This file wires:
- MarketScanner (cache reads, forced refresh, active universe)
- UniverseStore lifecycle (opened on startup, closed on shutdown)
- MarketAssistant (chat + daily insight)
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from market_alerts import __version__
from market_alerts.clients.llm_client import MarketAssistant
from market_alerts.config import Config
from market_alerts.core.errors import (
    AssistantConfigError,
    MarketAlertsError,
    QuoteFetchError,
    QuoteSourceError,
    SymbolNotFoundError,
    TooSoonError,
    UnknownUniverseError,
    UniverseError,
)
from market_alerts.core.models import Insight, Quote, ScanResult, ScannerStatus, UniverseInfo
from market_alerts.core.scanner import MarketScanner
from market_alerts.db.dbadapter import UniverseStore
from market_alerts.logger import get_logger

logger = get_logger(__name__)


# --- request bodies ---

class SymbolsUpdate(BaseModel):
    symbols: List[str]


class ActiveUniverseRequest(BaseModel):
    universe_id: str = Field(..., min_length=1)


class AlertContext(BaseModel):
    symbol: str
    change_percent: float
    price: float


class ChatRequest(BaseModel):
    message: str
    mode: str = "technical"
    context: Optional[List[AlertContext]] = None


def http_error(e: MarketAlertsError) -> HTTPException:
    """Translate domain errors into HTTP responses."""
    if isinstance(e, (UnknownUniverseError, SymbolNotFoundError)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, UniverseError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, TooSoonError):
        return HTTPException(
            status_code=429,
            detail={"error": str(e), "retry_after_minutes": e.retry_after_minutes},
            headers={"Retry-After": str(e.retry_after_minutes * 60)},
        )
    if isinstance(e, (QuoteSourceError, QuoteFetchError)):
        return HTTPException(status_code=502, detail=str(e))
    if isinstance(e, AssistantConfigError):
        return HTTPException(
            status_code=503,
            detail={
                "error": str(e),
                "fallback": "The AI service is temporarily unavailable. Please try again.",
            },
        )
    return HTTPException(status_code=500, detail=str(e))


async def scan_event_stream(scanner: MarketScanner, max_queue: int = 100) -> AsyncIterator[str]:
    """Server-sent events: one `data:` frame per completed scan."""
    queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)

    def _enqueue(result: ScanResult) -> None:
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(result)

    scanner.subscribe(_enqueue)
    try:
        while True:
            result = await queue.get()
            yield "data: " + result.model_dump_json() + "\n\n"
    finally:
        scanner.unsubscribe(_enqueue)


def create_app(
    config: Config,
    scanner: MarketScanner,
    store: Optional[UniverseStore] = None,
    assistant: Optional[MarketAssistant] = None,
) -> FastAPI:
    app = FastAPI(title="Market Alerts Scanner API", version=__version__)
    app.state.config = config
    app.state.scanner = scanner
    assistant = assistant or MarketAssistant(config.ai)
    app.state.assistant = assistant

    @app.on_event("startup")
    async def startup_event():
        if store is not None:
            await store.init()
        if config.scanner.autostart:
            await scanner.start(wait_initial=False)

    @app.on_event("shutdown")
    async def shutdown_event():
        await scanner.stop()
        await scanner.quote_source.close()
        await assistant.close()
        if store is not None:
            await store.close()

    # --- health ---

    @app.get("/health")
    async def health():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    # --- alerts ---

    @app.get("/api/alerts")
    async def get_alerts(universe: Optional[str] = Query(None)):
        """Cached alerts; never waits on upstream. Stale data triggers a background refresh."""
        try:
            view = scanner.get_alerts(universe)
        except MarketAlertsError as e:
            raise http_error(e)
        payload = view.model_dump(mode="json")
        payload["status"] = "ok" if view.has_data else "no_data"
        return payload

    @app.get("/api/alerts/status", response_model=ScannerStatus)
    async def get_status(universe: Optional[str] = Query(None)):
        try:
            return scanner.get_status(universe)
        except MarketAlertsError as e:
            raise http_error(e)

    @app.post("/api/alerts/refresh", response_model=ScanResult)
    async def force_refresh(universe: Optional[str] = Query(None)):
        """Blocking scan, limited by the minimum gap between scans."""
        try:
            return await scanner.force_refresh(universe)
        except MarketAlertsError as e:
            raise http_error(e)

    @app.get("/api/alerts/quote/{symbol}", response_model=Quote)
    async def lookup_quote(symbol: str):
        """Live quote for a single ticker; bypasses the alert cache."""
        try:
            return await scanner.lookup_symbol(symbol)
        except MarketAlertsError as e:
            raise http_error(e)

    @app.get("/api/alerts/stream")
    async def stream_alerts():
        return StreamingResponse(
            scan_event_stream(scanner),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    # --- universes ---

    @app.get("/api/universes", response_model=List[UniverseInfo])
    async def list_universes():
        return await scanner.registry.list_universes()

    @app.get("/api/universes/{universe_id}", response_model=UniverseInfo)
    async def get_universe(universe_id: str):
        try:
            return await scanner.registry.info(universe_id, include_symbols=True)
        except MarketAlertsError as e:
            raise http_error(e)

    async def _update(universe_id: str, body: SymbolsUpdate) -> Dict[str, Any]:
        try:
            symbols = await scanner.update_universe_symbols(universe_id, body.symbols)
        except MarketAlertsError as e:
            raise http_error(e)
        return {"success": True, "symbols": symbols, "count": len(symbols)}

    @app.put("/api/universes/{universe_id}")
    async def update_universe(universe_id: str, body: SymbolsUpdate):
        return await _update(universe_id, body)

    @app.delete("/api/universes/{universe_id}")
    async def reset_universe(universe_id: str):
        try:
            symbols = await scanner.reset_universe_symbols(universe_id)
        except MarketAlertsError as e:
            raise http_error(e)
        return {"success": True, "symbols": symbols, "count": len(symbols)}

    @app.post("/api/universes/custom")
    async def update_custom_universe(body: SymbolsUpdate):
        return await _update("CUSTOM", body)

    # --- scanner control ---

    @app.get("/api/scanner")
    async def scanner_info():
        return scanner.scanner_info()

    @app.post("/api/scanner/universe")
    async def set_scanner_universe(body: ActiveUniverseRequest):
        try:
            universe_id = scanner.set_active_universe(body.universe_id)
        except MarketAlertsError as e:
            raise http_error(e)
        name = scanner.registry.get(universe_id).name
        return {
            "success": True,
            "universe_id": universe_id,
            "message": f"Scanner universe changed to {name}",
        }

    # --- assistant ---

    @app.post("/api/ai/chat")
    async def chat(body: ChatRequest):
        if not body.message or not body.message.strip():
            raise HTTPException(status_code=400, detail="Message is required")
        if body.context is not None:
            context = body.context
        else:
            context = scanner.cache.read(scanner.active_universe).alerts
        try:
            response = await assistant.chat(body.message, mode=body.mode, context=context)
        except MarketAlertsError as e:
            raise http_error(e)
        return {"success": True, "response": response}

    @app.get("/api/ai/insight", response_model=Insight)
    async def get_insight():
        return await assistant.current_insight()

    @app.post("/api/ai/insight/refresh", response_model=Insight)
    async def refresh_insight():
        return await assistant.refresh_insight()

    return app
