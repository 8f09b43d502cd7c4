import logging
import time
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, load_settings
from .errors import MalformedInput
from .models import ApiResult, LinksPayload
from .service import LinkPersistenceService
from .storage import KVStoreAdapter, build_backend

logger = logging.getLogger(__name__)

ALLOWED_METHODS = ["GET", "POST", "DELETE", "OPTIONS"]
ALLOWED_HEADERS = ["Content-Type", "X-Requested-With"]

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": ", ".join(ALLOWED_METHODS),
    "Access-Control-Allow-Headers": ", ".join(ALLOWED_HEADERS),
}

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _reference_id() -> str:
    n = int(time.time() * 1000)
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = _BASE36[r] + out
    return out or "0"


def _error(status: int, error: str, message: str, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": error, "message": message},
        status_code=status,
        headers=headers,
    )


def build_service(settings: Settings) -> LinkPersistenceService:
    adapter = KVStoreAdapter(
        build_backend(settings),
        read_timeout=settings.server.read_timeout,
        write_timeout=settings.server.write_timeout,
    )
    return LinkPersistenceService(
        adapter,
        storage_key=settings.storage_key,
        strict_urls=settings.server.strict_urls,
    )


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[LinkPersistenceService] = None,
) -> FastAPI:
    settings = settings or load_settings()
    service = service or build_service(settings)
    always_ok = settings.server.always_ok

    app = FastAPI(title="TubeLinks")
    app.state.settings = settings
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=ALLOWED_METHODS,
        allow_headers=ALLOWED_HEADERS,
    )

    def store_status(result: ApiResult) -> int:
        if result.success or always_ok:
            return 200
        return 503

    @app.middleware("http")
    async def guard_and_cors(request: Request, call_next):
        if request.method == "OPTIONS" and request.url.path.startswith("/api/links"):
            # preflight, answered before routing and CORSMiddleware
            return Response(status_code=204, headers=CORS_HEADERS)
        try:
            response = await call_next(request)
        except Exception:
            ref = _reference_id()
            logger.exception(
                "Critical API error [%s] on %s %s", ref, request.method, request.url.path
            )
            response = JSONResponse(
                {
                    "success": False,
                    "error": "Internal Server Error",
                    "message": "An error occurred while processing your request",
                    "referenceId": ref,
                },
                status_code=200 if always_ok else 500,
                headers={"X-Error-Reference": ref},
            )
        for name, value in CORS_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 405:
            logger.warning("Method not allowed: %s %s", request.method, request.url.path)
            path = request.url.path.rstrip("/")
            if path == "/api/links":
                allow = ", ".join(ALLOWED_METHODS)
            elif path.startswith("/api/links/"):
                allow = "DELETE, OPTIONS"
            else:
                allow = (exc.headers or {}).get("Allow", "GET")
            return _error(
                405,
                "Method Not Allowed",
                f"{request.method} is not supported here",
                {"Allow": allow},
            )
        return _error(exc.status_code, str(exc.detail), str(exc.detail), exc.headers)

    @app.exception_handler(RequestValidationError)
    async def bad_request(request: Request, exc: RequestValidationError):
        if any(err.get("type") == "json_invalid" for err in exc.errors()):
            logger.error("Invalid JSON in request body on %s", request.url.path)
            return _error(400, "Bad Request", "Invalid JSON format in request body")
        return _error(400, "Bad Request", "Request body must be an object with a 'links' array")

    @app.exception_handler(MalformedInput)
    async def malformed_input(request: Request, exc: MalformedInput):
        return _error(400, "Bad Request", str(exc))

    @app.get("/api/health")
    async def health():
        return {"success": True, **service.status()}

    @app.get("/api/links")
    async def get_links():
        logger.debug("Handling GET request for links")
        links = await service.get_all()
        return {
            "success": True,
            "links": [l.to_wire() for l in links],
            "totalCount": len(links),
        }

    @app.post("/api/links")
    async def save_links(body: LinksPayload):
        logger.debug("Handling POST request for %d link(s)", len(body.links))
        result = await service.save(body.links)
        return JSONResponse(result.to_wire(), status_code=store_status(result))

    @app.delete("/api/links")
    async def clear_links():
        logger.debug("Handling DELETE request for all links")
        result = await service.clear_all()
        return JSONResponse(result.to_wire(), status_code=store_status(result))

    @app.delete("/api/links/{link_id:path}")
    async def delete_link(link_id: str):
        logger.debug("Handling DELETE request for link %s", link_id)
        result = await service.delete_one(link_id)
        status = store_status(result)
        if status == 200 and result.success and not result.deleted and not always_ok:
            status = 404
        return JSONResponse(result.to_wire(), status_code=status)

    return app


app = create_app()
