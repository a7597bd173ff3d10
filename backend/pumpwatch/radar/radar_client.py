"""
Radar provider client — metadata, legend and latest reflectivity image.

The provider answers a metadata request with:
    bounds.overlayTLC / overlayBRC   [lat, lon] corners of the overlay
    Latest.file / Latest.timeLocal   URL and local time of the newest image
    legends.levels / legends.colors  dBZ levels and their hex colours

The image itself is a PNG decoded to an (H, W, 4) RGBA array with rasterio.
"""

from __future__ import annotations

import logging
import warnings
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

import httpx
import numpy as np
from rasterio.errors import NotGeoreferencedWarning, RasterioError
from rasterio.io import MemoryFile

from backend.pumpwatch.core.config import settings
from backend.pumpwatch.core.errors import MalformedRecordError, UpstreamUnavailableError
from backend.pumpwatch.core.http import UpstreamClient
from backend.pumpwatch.radar.models import BoundingBox, RadarFrame
from backend.pumpwatch.radar.reflectivity import ColorLegend

logger = logging.getLogger(__name__)


def decode_rgba(data: bytes) -> np.ndarray:
    """Decode an image to (H, W, 4) uint8 RGBA."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", NotGeoreferencedWarning)
        with MemoryFile(data) as memfile:
            with memfile.open() as dataset:
                bands = dataset.read()
                colormap = None
                if dataset.count == 1:
                    try:
                        colormap = dataset.colormap(1)
                    except ValueError:
                        colormap = None

    if colormap:
        lut = np.zeros((256, 4), dtype=np.uint8)
        for index, rgba in colormap.items():
            lut[index] = rgba
        return lut[bands[0]]

    pixels = np.moveaxis(bands, 0, -1).astype(np.uint8, copy=False)
    height, width, count = pixels.shape
    if count == 4:
        return pixels
    if count == 3:
        alpha = np.full((height, width, 1), 255, dtype=np.uint8)
        return np.concatenate([pixels, alpha], axis=2)
    if count == 2:
        gray, alpha = pixels[..., :1], pixels[..., 1:]
        return np.concatenate([gray, gray, gray, alpha], axis=2)
    if count == 1:
        alpha = np.full((height, width, 1), 255, dtype=np.uint8)
        return np.concatenate([pixels, pixels, pixels, alpha], axis=2)
    raise MalformedRecordError(f"Unsupported radar image with {count} bands")


def parse_metadata(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Pull bounds, legend and latest-image info out of a metadata payload."""
    try:
        bounds = payload["bounds"]
        latest = payload["Latest"]
        legends = payload["legends"]
        return {
            "bounds": BoundingBox.from_overlay(bounds["overlayTLC"], bounds["overlayBRC"]),
            "legend": ColorLegend.from_hex(legends["levels"], legends["colors"]),
            "image_url": latest["file"],
            "radar_time": str(latest.get("timeLocal") or ""),
        }
    except (KeyError, TypeError, IndexError, ValueError) as e:
        raise MalformedRecordError(f"Radar metadata incomplete: {e}") from e


class RadarClient(UpstreamClient):
    """
    Usage:
        radar = RadarClient()
        frame = await radar.capture_frame()
        print(frame.width, frame.height, frame.radar_time)
    """

    service_name = "radar"

    def __init__(
        self,
        *,
        api_url: Optional[str] = None,
        token: Optional[str] = None,
        station: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        **kwargs,
    ):
        kwargs.setdefault("verify", settings.RADAR_VERIFY_TLS)
        super().__init__(client=client, **kwargs)
        self.api_url = api_url or settings.RADAR_API_URL
        self.token = token if token is not None else settings.RADAR_TOKEN
        self.station = station or settings.RADAR_STATION

    async def fetch_metadata(self) -> Dict[str, Any]:
        params = {"radar": self.station}
        if self.token:
            params["token"] = self.token
        payload = await self.get_json(self.api_url, params=params)
        if not isinstance(payload, Mapping):
            raise MalformedRecordError("Radar metadata is not an object")
        return parse_metadata(payload)

    async def capture_frame(self) -> RadarFrame:
        """Fetch metadata, then the latest image, and return a decoded frame."""
        meta = await self.fetch_metadata()
        data = await self.get_bytes(meta["image_url"])
        try:
            image = decode_rgba(data)
        except RasterioError as e:
            raise UpstreamUnavailableError(
                self.service_name, f"image not decodable: {e}", url=meta["image_url"],
            ) from e

        frame = RadarFrame(
            station=self.station,
            image=image,
            bounds=meta["bounds"],
            legend=meta["legend"],
            captured_at=datetime.now(timezone.utc),
            radar_time=meta["radar_time"],
            image_url=meta["image_url"],
        )
        logger.info(
            "Captured radar frame %s (%dx%d) at %s",
            self.station, frame.width, frame.height, frame.radar_time,
            extra={"station": self.station},
        )
        return frame
