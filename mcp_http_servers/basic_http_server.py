"""
Basic MCP HTTP Server

Exposes the add tool over stateless streamable HTTP.
Run: python -m mcp_http_servers.basic_http_server

Server listens on http://127.0.0.1:3005/mcp
"""
from dotenv import load_dotenv

from mcp_servers import BASIC_PROFILE, ServerSettings, create_mcp_http_app

# Load environment variables
load_dotenv()

settings = ServerSettings.from_env(BASIC_PROFILE)
app = create_mcp_http_app(BASIC_PROFILE, settings)


def main():
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
