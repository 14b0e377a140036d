"""MCP server exposing fal.ai image and video models as tools."""

__version__ = "1.1.0"

SERVER_NAME = "fal-image-video-mcp"
