"""MCP server entrypoint for page rasterization and text extraction."""
import base64
import binascii
import os
from typing import Any, Dict

from mcp.server.fastmcp import FastMCP

from .server import PageService


host = os.getenv("MCP_HOST", "127.0.0.1")
port = int(os.getenv("MCP_PORT", "8000"))
path = os.getenv("MCP_PATH", "/mcp").rstrip("/")
sse_path = f"{path}/sse"
message_path = f"{path}/messages/"

mcp = FastMCP(
    "mcp-pages",
    json_response=True,
    host=host,
    port=port,
    sse_path=sse_path,
    message_path=message_path,
)
service = PageService()


def _decode(document_base64: str) -> bytes:
    try:
        return base64.b64decode(document_base64 or "", validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("document_base64 is not valid base64") from exc


@mcp.tool()
def convert_pages(document_base64: str, output_dir: str) -> Dict[str, Any]:
    count, paths = service.rasterize(_decode(document_base64), output_dir)
    return {"page_count": count, "image_paths": paths}


@mcp.tool()
def extract_text(document_base64: str) -> Dict[str, Any]:
    text, page_count = service.extract_text(_decode(document_base64))
    return {"text": text, "page_count": page_count}


if __name__ == "__main__":
    transport = os.getenv("MCP_TRANSPORT", "stdio")
    mcp.run(transport=transport)
