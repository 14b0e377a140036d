"""Post-processing of media returned by fal.ai.

Download, data-URL encoding and auto-open are independent optional steps.
A failing step only drops its field from the result; ``process`` never raises.
"""

import asyncio
import base64
import logging
import os
import subprocess
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .config import ServerSettings

logger = logging.getLogger(__name__)


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


_EXTENSIONS = {MediaKind.IMAGE: "jpg", MediaKind.VIDEO: "mp4"}
_DEFAULT_CONTENT_TYPES = {MediaKind.IMAGE: "image/jpeg", MediaKind.VIDEO: "video/mp4"}


class MediaResult(BaseModel):
    """One processed media item as reported back to the client."""
    model_config = ConfigDict(populate_by_name=True)

    url: str
    local_path: Optional[str] = Field(default=None, alias="localPath")
    data_url: Optional[str] = Field(default=None, alias="dataUrl")
    width: Optional[int] = None
    height: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ============================================================================
# File Storage Helpers
# ============================================================================

def generate_filename(
    kind: MediaKind,
    label: str,
    index: Optional[int] = None,
    now: Optional[datetime] = None,
) -> str:
    """Generate a filesystem-safe filename with an ISO timestamp."""
    moment = now or datetime.now(timezone.utc)
    timestamp = moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    timestamp = timestamp.replace(":", "-").replace(".", "-")
    suffix = f"_{index}" if index is not None else ""
    return f"fal_{label}_{timestamp}{suffix}.{_EXTENSIONS[MediaKind(kind)]}"


def open_with_default_app(path: str) -> None:
    """Launch the platform viewer for ``path`` without waiting for it."""
    try:
        if sys.platform == "win32":
            os.startfile(path)
        else:
            command = "open" if sys.platform == "darwin" else "xdg-open"
            # stdout carries the stdio transport; keep the child off it
            subprocess.Popen(
                [command, path],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        logger.info("Auto-opened: %s", path)
    except OSError as e:
        logger.warning("Failed to auto-open %s: %s", path, e)


# ============================================================================
# Processor
# ============================================================================

class MediaProcessor:
    """Downloads, encodes and opens media according to the server settings."""

    def __init__(self, settings: ServerSettings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=None, follow_redirects=True, transport=self._transport)

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> Optional[Tuple[bytes, Optional[str]]]:
        try:
            response = await client.get(url)
            response.raise_for_status()
        except Exception as e:
            logger.warning("Could not fetch %s: %s", url, e)
            return None
        return response.content, response.headers.get("content-type")

    def _save(self, content: bytes, filename: str) -> Optional[str]:
        filepath = Path(self.settings.download_path) / filename
        try:
            filepath.write_bytes(content)
        except OSError as e:
            logger.warning("Could not save %s: %s", filepath, e)
            return None
        logger.info("Downloaded: %s", filepath)
        return str(filepath)

    def _encode(self, content: bytes, content_type: str) -> Optional[str]:
        if len(content) > self.settings.max_data_url_size:
            logger.info(
                "File too large for data URL: %d bytes (max: %d)",
                len(content), self.settings.max_data_url_size,
            )
            return None
        return f"data:{content_type};base64,{base64.b64encode(content).decode('ascii')}"

    async def process(
        self,
        url: str,
        label: str,
        kind: MediaKind = MediaKind.IMAGE,
        index: Optional[int] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> MediaResult:
        result = MediaResult(url=url, width=width, height=height)
        wants_download = self.settings.download_path is not None
        if not (wants_download or self.settings.enable_data_urls):
            return result

        try:
            if client is None:
                async with self._client() as own_client:
                    fetched = await self._fetch(own_client, url)
            else:
                fetched = await self._fetch(client, url)
            if fetched is None:
                return result
            content, content_type = fetched

            if wants_download:
                result.local_path = self._save(content, generate_filename(kind, label, index))
            if self.settings.enable_data_urls:
                result.data_url = self._encode(content, content_type or _DEFAULT_CONTENT_TYPES[MediaKind(kind)])
            if self.settings.autoopen and result.local_path:
                open_with_default_app(result.local_path)
        except Exception as e:
            logger.warning("Post-processing of %s degraded: %s", url, e)
        return result

    async def process_images(self, images: List[Dict[str, Any]], label: str) -> List[MediaResult]:
        """Process every image concurrently; indexes are added only for multi-image calls."""
        multiple = len(images) > 1
        async with self._client() as client:
            return list(await asyncio.gather(*(
                self.process(
                    image["url"],
                    label,
                    MediaKind.IMAGE,
                    index=i if multiple else None,
                    width=image.get("width"),
                    height=image.get("height"),
                    client=client,
                )
                for i, image in enumerate(images)
            )))

    async def process_video(self, video: Dict[str, Any], label: str) -> MediaResult:
        return await self.process(
            video["url"],
            label,
            MediaKind.VIDEO,
            width=video.get("width"),
            height=video.get("height"),
        )
