"""
HTTP MCP Server with OAuth 2.1 Support

Serves the protected MCP API together with the discovery documents clients
need to obtain a token:

- /.well-known/oauth-protected-resource (RFC 9728)
- /.well-known/oauth-authorization-server (RFC 8414, proxied from Cognito)
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import __version__
from .config import OAUTH_SCOPES, Settings
from .oauth.exceptions import MetadataUnavailableError
from .oauth.metadata import transform_authorization_server_metadata
from .oauth.metadata_cache import MetadataCache
from .oauth.resource_server import OAuthMiddleware, OAuthResourceServer

logger = logging.getLogger(__name__)

PUBLIC_PATHS = ["/health", "/.well-known", "/docs", "/openapi.json"]


def build_resource_server(settings: Settings) -> OAuthResourceServer:
    """Create the resource server (cache, validator, metadata) from settings."""
    base_url = settings.mcp_server_url.rstrip("/")
    cache = MetadataCache(
        metadata_url=settings.auth_server_metadata_url,
        ttl=settings.jwks_cache_ttl,
    )
    return OAuthResourceServer(
        resource=base_url,
        # Clients are pointed at our own proxy, which adds registration_endpoint
        authorization_servers=[settings.authorization_server_url],
        resource_metadata_url=settings.protected_resource_metadata_url,
        cache=cache,
        scopes_supported=list(OAUTH_SCOPES.keys()),
        resource_documentation=f"{base_url}/docs",
        algorithms=settings.allowed_algorithms,
        enforce_audience=settings.enforce_audience,
        refresh_on_unknown_kid=settings.refresh_jwks_on_unknown_kid,
    )


class ContextCreate(BaseModel):
    """Request body for creating an MCP context."""

    name: str | None = None


def create_app(
    settings: Settings | None = None,
    resource_server: OAuthResourceServer | None = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Application settings (loaded from environment when omitted)
        resource_server: Pre-built resource server, e.g. with a mocked cache

    Returns:
        Configured FastAPI app
    """
    settings = settings or Settings()
    resource_server = resource_server or build_resource_server(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info(f"Resource identifier: {resource_server.resource}")
        logger.info(f"Upstream authorization server metadata: {resource_server.cache.metadata_url}")
        logger.info(f"Protected resource metadata: {resource_server.resource_metadata_url}")
        logger.info(f"MCP Server started on {settings.http_host}:{settings.http_port}")
        yield
        resource_server.cache.invalidate()

    app = FastAPI(
        title="MCP OAuth Demo Server",
        description="MCP resource server protected by OAuth 2.1 bearer tokens",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.resource_server = resource_server

    # =========================================================================
    # Middleware (last added runs first)
    # =========================================================================

    app.add_middleware(
        OAuthMiddleware,
        resource_server=resource_server,
        exclude_paths=PUBLIC_PATHS,
    )

    @app.middleware("http")
    async def protocol_version_middleware(request: Request, call_next):
        """Log the MCP-Protocol-Version header when clients send it."""
        mcp_version = request.headers.get("MCP-Protocol-Version")
        if mcp_version:
            logger.info(f"MCP-Protocol-Version: {mcp_version}")
        return await call_next(request)

    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):
        """Add security headers to all responses."""
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "MCP-Protocol-Version"],
        # Browser-based clients must be able to read the challenge
        expose_headers=["WWW-Authenticate"],
    )

    # =========================================================================
    # Health & Metadata Endpoints
    # =========================================================================

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "mcp-oauth-demo", "version": __version__}

    @app.get("/.well-known/oauth-protected-resource")
    async def oauth_protected_resource_metadata():
        """RFC 9728 Protected Resource Metadata endpoint."""
        return resource_server.metadata.to_dict()

    @app.get("/.well-known/oauth-authorization-server")
    async def oauth_authorization_server_metadata():
        """RFC 8414 metadata, proxied from the upstream authorization server."""
        try:
            upstream = await resource_server.cache.get_auth_server_metadata()
        except MetadataUnavailableError as e:
            logger.error(f"Error proxying authorization server metadata: {e}")
            return JSONResponse(
                status_code=500,
                content={
                    "error": "server_error",
                    "error_description": "Unable to retrieve authorization server metadata",
                },
            )
        return transform_authorization_server_metadata(
            upstream, registration_endpoint=settings.dcr_endpoint
        )

    # =========================================================================
    # MCP API Endpoints (protected)
    # =========================================================================

    @app.get("/v1/contexts")
    async def list_contexts(request: Request):
        """List MCP contexts for the authenticated caller."""
        user = request.state.user
        logger.info(f"Listing contexts for {user['username']}")
        return [
            {
                "id": "ctx_123456",
                "name": "Default Context",
                "created_at": datetime.now(timezone.utc).isoformat(),
            }
        ]

    @app.post("/v1/contexts", status_code=201)
    async def create_context(request: Request, body: ContextCreate):
        """Create a new MCP context."""
        user = request.state.user
        context = {
            "id": f"ctx_{int(time.time() * 1000)}",
            "name": body.name or "New Context",
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        logger.info(f"Created context {context['id']} for {user['username']}")
        return context

    return app


app = create_app()


# =============================================================================
# Main Entry Point
# =============================================================================


def main():
    """Run HTTP server."""
    import uvicorn

    settings = app.state.settings
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    uvicorn.run(
        "mcp_oauth_demo.http_server:app",
        host=settings.http_host,
        port=settings.http_port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
