"""
SSE MCP HTTP Server

Serves each client over a long-lived SSE stream (GET /mcp) with
follow-up messages on POST /messages.
Run: python -m mcp_http_servers.sse_http_server

Server listens on http://127.0.0.1:3006/mcp
"""
from dotenv import load_dotenv

from mcp_servers import SSE_PROFILE, ServerSettings, create_mcp_http_app

# Load environment variables
load_dotenv()

settings = ServerSettings.from_env(SSE_PROFILE)
app = create_mcp_http_app(SSE_PROFILE, settings)


def main():
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
