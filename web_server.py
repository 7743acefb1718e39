#!/usr/bin/env python3

import json
import logging
import traceback

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route
import uvicorn
import yaml

from request_validator import LogRequestValidator
from operations_queue import OperationsQueue
from index_store import IndexStore
from auth_middleware import AuthMiddleware, DefaultRejectMiddleware, noauth, require_scope
from jwt_auth import SCOPE_INGEST, SCOPE_STATUS

logger = logging.getLogger(__name__)

ACK_BODY = "done"


class StarletteWebServer:
    """Starlette-based log ingestion server"""

    def __init__(
        self,
        request_validator: LogRequestValidator,
        operations_queue: OperationsQueue,
        index_store: IndexStore,
        jwt_secret: str = "",
    ):
        self.request_validator = request_validator
        self.operations_queue = operations_queue
        self.index_store = index_store
        self.jwt_secret = jwt_secret

        middleware = [
            Middleware(AuthMiddleware, jwt_secret=jwt_secret),
            Middleware(DefaultRejectMiddleware),
        ]

        self.app = Starlette(
            routes=[
                Route("/", self.handle_log, methods=["POST"]),
                Route("/health", self.health_check, methods=["GET"]),
                Route("/status", self.status, methods=["GET"]),
                Route("/openapi.yaml", self.openapi_spec, methods=["GET"]),
            ],
            middleware=middleware,
        )

    async def _read_payload(self, request: Request):
        content_type = request.headers.get("content-type", "")
        if content_type.startswith("application/json"):
            body = await request.body()
            return json.loads(body.decode("utf-8"))
        form = await request.form()
        return dict(form)

    @require_scope(SCOPE_INGEST)
    async def handle_log(self, request: Request):
        """Accept a log entry; storage happens in the background"""
        try:
            try:
                payload = await self._read_payload(request)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                logger.error(f"Invalid JSON payload: {e}")
                return JSONResponse({"error": "Invalid JSON payload"}, status_code=400)

            entry, errors = self.request_validator.validate(payload)
            if entry is None:
                return JSONResponse({"error": "Invalid input", "details": errors}, status_code=400)

            self.operations_queue.enqueue_log_entry(entry)
            return PlainTextResponse(ACK_BODY)

        except Exception as e:
            logger.error(f"Error accepting log entry: {e}")
            logger.error(f"Log request traceback: {traceback.format_exc()}")
            return JSONResponse({"error": "Internal server error"}, status_code=500)

    @noauth
    async def health_check(self, request: Request):
        """Health check endpoint - no authentication required"""
        return JSONResponse({"status": "healthy"})

    @require_scope(SCOPE_STATUS)
    async def status(self, request: Request):
        """Background processing outcomes and index size"""
        return JSONResponse({
            "queue": self.operations_queue.get_status(),
            "index": self.index_store.snapshot(),
        })

    @noauth
    async def openapi_spec(self, request: Request):
        """Serve OpenAPI specification - no authentication required"""
        base_url = str(request.base_url).rstrip("/")

        # Use X-Forwarded-Proto header if present (common with reverse proxies)
        forwarded_proto = request.headers.get("x-forwarded-proto")
        if forwarded_proto == "https" and base_url.startswith("http://"):
            base_url = base_url.replace("http://", "https://")

        string_field = lambda max_length: {"type": "string", "minLength": 1, "maxLength": max_length}
        log_request_schema = {
            "type": "object",
            "properties": {
                "log_kind_name": string_field(30),
                "sub_kind_name": string_field(30),
                "sub_sub_kind_name": string_field(30),
                "log_text": string_field(150),
                "unix_time": {"type": "string", "pattern": "^\\d{1,11}$", "example": "1700000000"},
            },
            "required": ["log_kind_name", "sub_kind_name", "sub_sub_kind_name", "log_text", "unix_time"],
        }

        spec_data = {
            "openapi": "3.0.3",
            "info": {
                "title": "Sheets Log Ingest API",
                "description": "Append log entries to monthly Google Sheets, one folder per log kind.",
                "version": "1.0.0",
            },
            "servers": [{"url": base_url, "description": "Current server"}],
            "paths": {
                "/": {
                    "post": {
                        "summary": "Append a log entry",
                        "description": "Validates and acknowledges the entry. Storage happens in the background; check /status for failures.",
                        "requestBody": {
                            "required": True,
                            "content": {
                                "application/json": {"schema": log_request_schema},
                                "application/x-www-form-urlencoded": {"schema": log_request_schema},
                            },
                        },
                        "responses": {
                            "200": {
                                "description": "Entry accepted",
                                "content": {"text/plain": {"example": ACK_BODY}},
                            },
                            "400": {"description": "Invalid input"},
                            "401": {"description": "Missing or invalid token (when auth is enabled)"},
                        },
                    }
                },
                "/health": {
                    "get": {
                        "summary": "Health check",
                        "security": [],
                        "responses": {"200": {"description": "Service is healthy"}},
                    }
                },
                "/status": {
                    "get": {
                        "summary": "Processing status",
                        "description": "Queue counters, recent failures and index size",
                        "responses": {"200": {"description": "Current status"}},
                    }
                },
            },
        }

        yaml_content = yaml.dump(spec_data, default_flow_style=False, sort_keys=False)
        return Response(
            yaml_content,
            media_type="application/x-yaml",
            headers={"Content-Disposition": "inline; filename=openapi.yaml"},
        )

    def run(self, host: str = "0.0.0.0", port: int = 3000):
        """Run the server"""
        auth_mode = "JWT bearer tokens" if self.jwt_secret else "disabled"
        logger.info(f"Starting log ingest server on {host}:{port}")
        logger.info(f"Authentication: {auth_mode}")

        uvicorn.run(self.app, host=host, port=port, log_level="info")


def create_server(
    request_validator: LogRequestValidator,
    operations_queue: OperationsQueue,
    index_store: IndexStore,
    jwt_secret: str = "",
) -> StarletteWebServer:
    """Create and configure the Starlette log ingest server"""
    return StarletteWebServer(request_validator, operations_queue, index_store, jwt_secret)
