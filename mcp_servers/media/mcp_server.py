"""MCP server entrypoint for media service."""
import os
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from .server import MediaService


host = os.getenv("MCP_HOST", "127.0.0.1")
port = int(os.getenv("MCP_PORT", "8000"))
path = os.getenv("MCP_PATH", "/mcp").rstrip("/")
sse_path = f"{path}/sse"
message_path = f"{path}/messages/"
data_root = os.getenv("DATA_ROOT", "data")

mcp = FastMCP(
    "mcp-media",
    json_response=True,
    host=host,
    port=port,
    sse_path=sse_path,
    message_path=message_path,
)
service = MediaService()


@mcp.tool()
def normalize_video(input_path: str, output_path: str) -> Dict[str, Any]:
    return {"output_path": service.normalize(input_path, output_path)}


@mcp.tool()
def composite_page(image_path: str, clip_path: str, output_path: str, page_index: int = 0) -> Dict[str, Any]:
    return {"output_path": service.composite(image_path, clip_path, output_path, page_index=page_index)}


@mcp.tool()
def concat_videos(clip_paths: List[str], output_path: str, manifest_path: Optional[str] = None) -> Dict[str, Any]:
    return {"output_path": service.concat(clip_paths, output_path, manifest_path)}


@mcp.tool()
def stitch_videos(video_urls: List[str]) -> Dict[str, Any]:
    return service.stitch_urls(
        video_urls,
        work_root=os.path.join(data_root, "work"),
        output_dir=os.path.join(data_root, "output"),
    )


@mcp.tool()
def probe_video(video_path: str) -> Dict[str, Any]:
    return service.probe(video_path)


if __name__ == "__main__":
    transport = os.getenv("MCP_TRANSPORT", "stdio")
    mcp.run(transport=transport)
