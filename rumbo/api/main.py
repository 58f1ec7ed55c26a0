import os
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from rumbo.api.endpoints import imports, reconcile
from rumbo.common.logging_config import clear_request_id, get_logger, set_request_id, setup_logging

# Initialize Structured Logging
setup_logging(log_file=os.getenv("RUMBO_LOG_FILE", "logs/rumbo.log"))
logger = get_logger("api.main")

app = FastAPI(title="Rumbo Import API", version="1.0.0")


# Middleware for Request ID and Logging
@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    request_id = str(uuid.uuid4())
    set_request_id(request_id)
    start_time = time.time()

    logger.info(
        f"Request started: {request.method} {request.url.path}",
        client=request.client.host if request.client else "unknown",
    )

    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(
            f"Request failed: {e}",
            process_time_ms=round((time.time() - start_time) * 1000, 2),
            exc_info=True,
        )
        raise
    else:
        logger.info(
            f"Request completed: {request.method} {request.url.path} - Status: {response.status_code}",
            status_code=response.status_code,
            process_time_ms=round((time.time() - start_time) * 1000, 2),
        )
        response.headers["X-Request-ID"] = request_id
        return response
    finally:
        clear_request_id()


# CORS Setup - Enable frontend access
origins = [
    "http://localhost:5173",  # Vite Default
    "http://localhost:3000",
    "http://127.0.0.1:5173",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include Routers
app.include_router(imports.router, prefix="/api/import", tags=["Import"])
app.include_router(reconcile.router, prefix="/api/import/reconciliation", tags=["Reconciliation"])


@app.get("/api/health")
def health_check():
    return {"status": "ok", "app": "Rumbo"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8010)
