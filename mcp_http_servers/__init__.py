"""
HTTP entry points for the MCP demo servers

Each module builds the ASGI app for one variant and runs it with uvicorn:
- basic_http_server: Port 3005
- notifications_http_server: Port 3005
- sse_http_server: Port 3006

Run one with ``python -m mcp_http_servers.<module>``; ``PORT`` overrides
the default.
"""
