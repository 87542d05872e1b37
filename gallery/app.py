# gallery/app.py
import time
import asyncio
from contextlib import asynccontextmanager

# Load .env BEFORE any gallery imports (they read env vars at import time)
from dotenv import load_dotenv
load_dotenv(override=True)

from fastapi import FastAPI, Request, Query, Path, WebSocket
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response, PlainTextResponse

from gallery.service import GalleryService, IMAGE_GENERATION_ENABLED, DEFAULT_LIST_COUNT
from gallery.schemas import SubmitRequest
from gallery.scheduler import scheduler
from gallery.live import broker
from gallery import monitoring
from gallery import db as dbmod


@asynccontextmanager
async def lifespan(app: FastAPI):
    # pick up jobs interrupted by the previous process
    scheduler.recover()
    yield
    scheduler.shutdown(wait=True)


app = FastAPI(title="AI Gallery API", lifespan=lifespan)

# Initialize DB tables on startup
dbmod.init_db()

# instantiate the gallery service once; registers the generate job
service = GalleryService(scheduler=scheduler)


def _error(status_code: int, error_code: str, message: str, **details) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "status": "error",
            "error_code": error_code,
            "message": message,
            "details": details,
        },
    )


# ---------------------------------------------------------------------------
# Metrics middleware
# ---------------------------------------------------------------------------
@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start = time.time()
    endpoint = request.url.path
    method = request.method
    status = "500"
    try:
        response = await call_next(request)
        status = str(response.status_code)
        return response
    except Exception:
        monitoring.logger.exception("Unhandled exception in request", extra={"path": endpoint})
        raise
    finally:
        monitoring.observe_request(start, endpoint, method, status)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@app.post("/api/prompts")
def submit_prompt(req: SubmitRequest):
    """
    POST /api/prompts
    Body: { "sessionId": "...", "prompt": "...", "outputType": "text" | "image" }
    Fulfillment happens asynchronously; the record shows up as pending right away.
    """
    if req.output_type == "image" and not IMAGE_GENERATION_ENABLED:
        return _error(422, "E_OUTPUT_DISABLED", "Image generation is disabled")
    try:
        prompt_id = service.submit(req.session_id, req.prompt, req.output_type)
    except Exception as e:
        monitoring.logger.exception("Unexpected error in /api/prompts handler")
        return _error(500, "E_INTERNAL", "Internal server error", exception=str(e))
    return JSONResponse(status_code=202, content={"status": "accepted", "id": prompt_id})


@app.get("/api/prompts")
def list_prompts(count: int = Query(DEFAULT_LIST_COUNT, ge=0, description="Number of records")):
    """
    GET /api/prompts?count=10
    Most recent records, newest first, with image results resolved to URLs.
    """
    try:
        return JSONResponse(status_code=200, content=service.list_recent_payload(count))
    except Exception as e:
        monitoring.logger.exception("Unexpected error in /api/prompts list handler")
        return _error(500, "E_INTERNAL", "Internal server error", exception=str(e))


@app.websocket("/api/prompts/live")
async def live_prompts(websocket: WebSocket, count: int = Query(DEFAULT_LIST_COUNT, ge=0)):
    """
    WS /api/prompts/live?count=10
    Sends the recent list on connect and again after every record change.
    """
    await websocket.accept()
    loop = asyncio.get_running_loop()
    changed = asyncio.Event()
    # publish() runs on whichever thread committed the change
    unsubscribe = broker.subscribe(lambda: loop.call_soon_threadsafe(changed.set))
    receive = asyncio.ensure_future(websocket.receive())
    try:
        await websocket.send_json(await run_in_threadpool(service.list_recent_payload, count))
        while True:
            changed_wait = asyncio.ensure_future(changed.wait())
            done, _ = await asyncio.wait({receive, changed_wait}, return_when=asyncio.FIRST_COMPLETED)
            if receive in done:
                changed_wait.cancel()
                if receive.result()["type"] == "websocket.disconnect":
                    break
                # client messages carry no meaning; keep listening
                receive = asyncio.ensure_future(websocket.receive())
                continue
            changed.clear()
            await websocket.send_json(await run_in_threadpool(service.list_recent_payload, count))
    finally:
        unsubscribe()
        receive.cancel()


@app.get("/api/storage/{blob_ref}")
def get_blob(blob_ref: str = Path(..., description="Blob reference")):
    blob = service.blob_store.fetch(blob_ref)
    if blob is None:
        return _error(404, "E_NOT_FOUND", "Blob not found")
    data, content_type = blob
    return Response(content=data, media_type=content_type)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/metrics")
async def metrics():
    if not monitoring.PROMETHEUS_ENABLED:
        return PlainTextResponse("Prometheus disabled", status_code=404)
    payload, content_type = monitoring.prometheus_metrics_response()
    return Response(content=payload, media_type=content_type)
