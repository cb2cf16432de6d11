"""
Base service class for storefront backend services.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Dict, Any, Optional
import time
import os

from shared.config import ServiceConfig, cors_origins, get_config
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import get_metrics_collector
from shared.errors import ErrorResponse, StoreException


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)
        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()

        configure_logging(service_name, self.config.log_level, json_logs=self.config.env != "local")

        if self.config.enable_tracing:
            from shared.tracing import configure_tracing
            configure_tracing(
                service_name,
                self.config.otel_exporter,
                enable_console=self.config.enable_console_tracing,
            )

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            await self.start()
            try:
                yield
            finally:
                await self.stop()

        return FastAPI(
            lifespan=lifespan,
            title=f"{self.service_name.title()} Service",
            description=f"Storefront backend - {self.service_name.title()} Service",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
        )

    def _setup_middleware(self):
        """Set up middleware."""

        origins = cors_origins(self.config)
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials="*" not in origins,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Request-ID"],
        )

        @self.app.middleware("http")
        async def add_request_timing(request: Request, call_next):
            start_time = time.time()
            request_id = set_request_id(request.headers.get("X-Request-ID"))

            try:
                response = await call_next(request)
            finally:
                clear_context()

            duration = time.time() - start_time
            route = request.scope.get("route")
            endpoint = getattr(route, "path", request.url.path)

            self.metrics.record_http_request(
                method=request.method,
                endpoint=endpoint,
                status_code=response.status_code,
                duration=duration
            )

            self.logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
                request_id=request_id,
            )

            response.headers["X-Request-ID"] = request_id
            return response

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint. Any failing dependency makes the service degraded."""
            try:
                dependencies = await self._check_dependencies()
                status = "ok" if all(value == "ok" for value in dependencies.values()) else "degraded"
                self.metrics.record_health_check(status)

                return JSONResponse(
                    status_code=200 if status == "ok" else 503,
                    content={
                        "service": self.service_name,
                        "status": status,
                        "uptime_seconds": self._get_uptime(),
                        "dependencies": dependencies,
                        "version": "1.0.0",
                        "commit": os.getenv("GIT_COMMIT", "unknown")
                    }
                )
            except Exception as e:
                self.logger.error("Health check failed", error=str(e))
                self.metrics.record_health_check("error")
                return JSONResponse(
                    status_code=503,
                    content={
                        "service": self.service_name,
                        "status": "error",
                        "error": str(e)
                    }
                )

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
            return Response(
                content=generate_latest(),
                media_type=CONTENT_TYPE_LATEST
            )

        @self.app.exception_handler(StoreException)
        async def store_exception_handler(request: Request, exc: StoreException):
            """Handle StoreException."""
            log = self.logger.error if exc.status_code >= 500 else self.logger.warning
            log(
                "Request failed",
                code=exc.code,
                message=exc.message,
                details=exc.details,
                path=request.url.path,
            )
            self.metrics.record_error(exc.code)

            response = exc.to_response()
            if exc.status_code >= 500:
                # Details of server-side failures stay in the logs
                response = ErrorResponse(
                    trace_id=response.trace_id,
                    code=exc.code,
                    message="Internal server error",
                )
            return JSONResponse(
                status_code=exc.status_code,
                content=response.model_dump()
            )

        @self.app.exception_handler(RequestValidationError)
        async def request_validation_handler(request: Request, exc: RequestValidationError):
            """Handle malformed request bodies and parameters."""
            self.logger.warning("Invalid request", path=request.url.path, errors=str(exc.errors()))
            return JSONResponse(
                status_code=400,
                content=ErrorResponse(
                    code="VALIDATION_ERROR",
                    message="Invalid data provided!",
                    details={"errors": [
                        {"loc": list(error.get("loc", [])), "msg": error.get("msg")}
                        for error in exc.errors()
                    ]},
                ).model_dump()
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error("Unhandled exception", error=str(exc), path=request.url.path, exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return JSONResponse(
                status_code=500,
                content=ErrorResponse(
                    code="INTERNAL_ERROR",
                    message="Internal server error",
                ).model_dump()
            )

    async def start(self):
        """Connect service components. Override in subclasses."""

    async def stop(self):
        """Release service components. Override in subclasses."""

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
