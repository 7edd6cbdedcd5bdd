import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api.router import api_router
from .config import get_settings
from .core.logging import setup_logging, get_logger
from .core.request_context import request_id_var
from .exceptions import register_exception_handlers


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = get_logger(__name__)
    settings = get_settings()
    logger.info(
        "Permission manager starting: cluster=%s server=%s signing_backend=%s",
        settings.cluster_name,
        settings.cluster_server,
        settings.signing_backend,
    )
    yield
    logger.info("Permission manager shutting down")


# logging must be configured before the first request is served
setup_logging()

app = FastAPI(
    title="Permission Manager API",
    description="Kubernetes RBAC management and user kubeconfig issuance",
    version=__version__,
    lifespan=lifespan,
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    token = request_id_var.set(request_id)
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)
    response.headers["X-Request-ID"] = request_id
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(api_router)


@app.get("/")
async def root():
    return {"message": "Hello, World!"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
