import logging
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fulfillment_engine.domain.errors import FulfillmentEngineError
from fulfillment_engine.observability import incr_metric, log_event
from fulfillment_engine.routers import (
    admin,
    fulfillment,
    marketplace,
    signup_grants,
    webhooks,
)

app = FastAPI(title="Lead Fulfillment Engine", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def attach_request_id(request: Request, call_next):
    request_id = (
        request.headers.get("X-Request-ID")
        or request.headers.get("X-Correlation-ID")
        or str(uuid4())
    )
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(FulfillmentEngineError)
async def handle_engine_error(request: Request, exc: FulfillmentEngineError):
    incr_metric("requests.failed", reason=exc.reason, path=request.url.path)
    log_event(
        "request_failed",
        level=logging.ERROR if exc.status_code >= 500 else logging.INFO,
        request_id=getattr(request.state, "request_id", None),
        path=request.url.path,
        status_code=exc.status_code,
        reason=exc.reason,
        error=str(exc),
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail()})


app.include_router(webhooks.router)
app.include_router(fulfillment.router)
app.include_router(signup_grants.router)
app.include_router(admin.router)
app.include_router(marketplace.router)


@app.get("/")
async def root():
    return {"status": "ok", "service": "lead-fulfillment-engine"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
