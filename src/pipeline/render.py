"""Label renderers and asset fetching.

Two `Renderer` implementations:
- `HTTPRenderer` posts the DSL to a render service and receives an image.
- `PillowRenderer` draws a local approximation of the label with Pillow,
  good enough for previews, refinement and tests.
"""

import asyncio
import io
import logging
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx
from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from src.config import EnvVar, get_environment
from src.dsl import ImageElement, LabelDSL, ShapeElement, TextElement, dsl_to_dict, hex_to_rgb
from src.storage import BlobStore, ImageMetadataError, StorageError, detect_image_metadata

from .models import RenderedImage

logger = logging.getLogger(__name__)


class RenderError(Exception):
    """Error during rendering."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


# =============================================================================
# Asset Fetching
# =============================================================================


class AssetFetcher:
    """Resolve asset URLs to bytes.

    Handles URLs served by the configured blob store, ``file://`` URLs and
    plain HTTP(S). Anything else resolves to None.
    """

    def __init__(self, blobs: BlobStore | None = None, timeout: float = 30.0):
        self.blobs = blobs
        self.timeout = timeout

    def _blob_path(self, url: str) -> str | None:
        if self.blobs is None:
            return None
        prefix = self.blobs.public_url("x")[:-1]
        if url.startswith(prefix):
            return url[len(prefix):]
        return None

    async def fetch(self, url: str) -> bytes | None:
        path = self._blob_path(url)
        if path is not None:
            return await self.blobs.get(path)

        parsed = urlparse(url)
        if parsed.scheme == "file":
            return await asyncio.to_thread(Path(unquote(parsed.path)).read_bytes)
        if parsed.scheme in ("http", "https"):
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.content

        logger.debug(f"No fetcher for asset URL {url}")
        return None


# =============================================================================
# HTTP Render Service
# =============================================================================


class HTTPRenderer:
    """Client for a remote label render service.

    The service accepts ``POST {base_url}/render`` with
    ``{"dsl": <LabelDSL>, "format": "png"}`` and answers with image bytes.

    Attributes:
        base_url: Service URL.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize render client.

        Args:
            base_url: Service URL. Defaults to RENDERER_URL.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (tests use MockTransport).
        """
        base_url = base_url or get_environment(EnvVar.RENDERER_URL)
        if not base_url:
            raise ValueError("Renderer URL required. Set RENDERER_URL or pass base_url.")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def is_available(self) -> bool:
        """Check if the render service is reachable."""
        try:
            async with self._client() as client:
                response = await client.get(f"{self.base_url}/health", timeout=5.0)
            return response.status_code == 200
        except (httpx.RequestError, httpx.TimeoutException):
            return False

    async def render(self, dsl: LabelDSL) -> RenderedImage:
        """Render a DSL to an image.

        Raises:
            RenderError: If the service fails or returns an unreadable image.
        """
        url = f"{self.base_url}/render"
        try:
            async with self._client() as client:
                response = await client.post(url, json={"dsl": dsl_to_dict(dsl), "format": "png"})
        except httpx.TimeoutException as e:
            raise RenderError(f"Render request timed out: {e}") from e
        except httpx.RequestError as e:
            raise RenderError(f"Render request failed: {e}") from e

        if response.status_code != 200:
            raise RenderError(
                f"Renderer returned {response.status_code}",
                status_code=response.status_code,
                response_body=response.text[:500],
            )

        try:
            metadata = detect_image_metadata(response.content)
        except ImageMetadataError as e:
            raise RenderError(f"Renderer returned an unreadable image: {e}") from e

        logger.info(f"Rendered label via {self.base_url} ({metadata.width}x{metadata.height})")
        return RenderedImage(
            data=response.content,
            width=metadata.width,
            height=metadata.height,
            format=metadata.format,
        )


# =============================================================================
# Local Pillow Renderer
# =============================================================================


class PillowRenderer:
    """Draw a label with Pillow.

    Elements are painted in ascending ``z``. Image elements are fetched
    through ``fetcher`` and fall back to a tinted placeholder when the asset
    is unavailable. Text uses Pillow's default font scaled to ``fontSize``.
    """

    def __init__(self, fetcher: AssetFetcher | None = None, scale: float = 1.0):
        if not 0.1 <= scale <= 5.0:
            raise ValueError(f"Scale must be between 0.1 and 5.0, got {scale}")
        self.fetcher = fetcher
        self.scale = scale

    async def render(self, dsl: LabelDSL) -> RenderedImage:
        assets: dict[str, bytes | None] = {}
        if self.fetcher is not None:
            for asset in dsl.assets:
                try:
                    assets[asset.id] = await self.fetcher.fetch(asset.url)
                except (OSError, StorageError, httpx.HTTPError) as e:
                    logger.warning(f"Could not fetch asset {asset.id}: {e}")
                    assets[asset.id] = None

        data, width, height = await asyncio.to_thread(self._draw, dsl, assets)
        logger.debug(f"Rendered {len(dsl.elements)} elements locally ({width}x{height})")
        return RenderedImage(data=data, width=width, height=height, format="png")

    def _draw(self, dsl: LabelDSL, assets: dict[str, bytes | None]) -> tuple[bytes, int, int]:
        width = max(1, round(dsl.canvas.width * self.scale))
        height = max(1, round(dsl.canvas.height * self.scale))
        canvas = Image.new("RGB", (width, height), hex_to_rgb(dsl.canvas.background))
        draw = ImageDraw.Draw(canvas)

        for element in sorted(dsl.elements, key=lambda e: e.z):
            box = (
                round(element.bounds.x * width),
                round(element.bounds.y * height),
                round((element.bounds.x + element.bounds.w) * width),
                round((element.bounds.y + element.bounds.h) * height),
            )
            if isinstance(element, ShapeElement):
                self._draw_shape(draw, element, box, dsl)
            elif isinstance(element, TextElement):
                self._draw_text(draw, element, box, dsl)
            elif isinstance(element, ImageElement):
                self._draw_image(canvas, element, box, assets.get(element.asset_id), dsl)

        buffer = io.BytesIO()
        canvas.save(buffer, format="PNG")
        return buffer.getvalue(), width, height

    def _draw_shape(self, draw: ImageDraw.ImageDraw, element: ShapeElement, box, dsl: LabelDSL) -> None:
        color = hex_to_rgb(dsl.palette.color_for(element.color))
        stroke = max(1, round(element.stroke_width * self.scale))
        if element.shape == "line":
            mid = (box[1] + box[3]) // 2
            draw.line([(box[0], mid), (box[2], mid)], fill=color, width=stroke)
        elif element.stroke_width:
            draw.rectangle(box, outline=color, width=stroke)
        else:
            draw.rectangle(box, fill=color)

    def _draw_text(self, draw: ImageDraw.ImageDraw, element: TextElement, box, dsl: LabelDSL) -> None:
        text = element.text
        if element.text_transform == "uppercase":
            text = text.upper()
        elif element.text_transform == "lowercase":
            text = text.lower()

        size = max(1, round(element.font_size * self.scale))
        font = ImageFont.load_default(size=size)
        color = hex_to_rgb(dsl.palette.color_for(element.color))

        left, top, right, _ = draw.textbbox((0, 0), text, font=font)
        text_width = right - left
        if element.align == "center":
            x = box[0] + (box[2] - box[0] - text_width) // 2
        elif element.align == "right":
            x = box[2] - text_width
        else:
            x = box[0]
        draw.text((x, box[1] - top), text, fill=color, font=font)

    def _draw_image(self, canvas: Image.Image, element: ImageElement, box, data: bytes | None, dsl: LabelDSL) -> None:
        size = (max(1, box[2] - box[0]), max(1, box[3] - box[1]))
        tile = None
        if data is not None:
            try:
                with Image.open(io.BytesIO(data)) as source:
                    tile = source.convert("RGBA")
                    tile.load()
            except (UnidentifiedImageError, OSError) as e:
                logger.warning(f"Asset {element.asset_id} is not a readable image: {e}")

        if tile is None:
            tile = Image.new("RGBA", size, hex_to_rgb(dsl.palette.accent) + (255,))
        elif element.fit == "fill":
            tile = tile.resize(size)
        elif element.fit == "cover":
            ratio = max(size[0] / tile.width, size[1] / tile.height)
            tile = tile.resize((max(1, round(tile.width * ratio)), max(1, round(tile.height * ratio))))
            left = (tile.width - size[0]) // 2
            top = (tile.height - size[1]) // 2
            tile = tile.crop((left, top, left + size[0], top + size[1]))
        else:
            tile.thumbnail(size)

        if element.rotation:
            tile = tile.rotate(-element.rotation, expand=False)
        if element.opacity < 1:
            alpha = tile.getchannel("A").point(lambda a: round(a * element.opacity))
            tile.putalpha(alpha)

        offset = (
            box[0] + (size[0] - tile.width) // 2,
            box[1] + (size[1] - tile.height) // 2,
        )
        canvas.paste(tile, offset, tile)


__all__ = [
    "RenderError",
    "AssetFetcher",
    "HTTPRenderer",
    "PillowRenderer",
]
