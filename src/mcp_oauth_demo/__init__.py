"""MCP OAuth 2.1 demo: protected resource server and auto-discovery client."""

__version__ = "0.1.0"
