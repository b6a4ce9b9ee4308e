"""Screen capture provider writing screenshots to the data directory."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

import mss
import mss.tools
from mss.exception import ScreenShotError
from PIL import Image

from .errors import AcquisitionError, AcquisitionErrorKind
from .models import ActiveContext

logger = logging.getLogger(__name__)


class CaptureProvider(Protocol):
    def is_authorized(self) -> bool:
        ...

    async def capture(self, context: Optional[ActiveContext] = None) -> Path:
        ...

    def convert_to_final_format(self, path: Path) -> Path:
        ...


class ScreenCapturer:
    """Captures the screen or the frontmost window with mss."""

    def __init__(
        self,
        *,
        output_dir: Path | str,
        prefix: str = "capture",
        image_format: str = "jpeg",
        jpeg_quality: float = 0.7,
        frontmost_window_only: bool = True,
        analyze_as_png: bool = True,
        monitor_index: int = 1,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix
        self.image_format = image_format.lower()
        self.jpeg_quality = jpeg_quality
        self.frontmost_window_only = frontmost_window_only
        self.analyze_as_png = analyze_as_png
        self.monitor_index = monitor_index

    @property
    def converts_after_analysis(self) -> bool:
        return self.analyze_as_png and self.image_format != "png"

    def is_authorized(self) -> bool:
        """True when at least one display can be enumerated and grabbed."""

        try:
            with mss.mss() as sct:
                return len(sct.monitors) > 1
        except ScreenShotError as exc:
            logger.warning("Screen capture is not available: %s", exc)
            return False

    async def capture(self, context: Optional[ActiveContext] = None) -> Path:
        return await asyncio.to_thread(self._capture, context)

    def _capture(self, context: Optional[ActiveContext]) -> Path:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        extension = "png" if self.converts_after_analysis or self.image_format == "png" else "jpg"
        destination = self.output_dir / f"{self.prefix}_{timestamp}.{extension}"
        try:
            with mss.mss() as sct:
                monitors = sct.monitors
                if len(monitors) <= 1:
                    raise AcquisitionError(AcquisitionErrorKind.NO_DISPLAY, "no display available")
                region = self._frontmost_region(context)
                if region is None:
                    index = min(max(self.monitor_index, 1), len(monitors) - 1)
                    region = monitors[index]
                shot = sct.grab(region)
        except ScreenShotError as exc:
            raise AcquisitionError(AcquisitionErrorKind.NOT_AUTHORIZED, str(exc)) from exc
        if extension == "png":
            mss.tools.to_png(shot.rgb, shot.size, output=str(destination))
        else:
            image = Image.frombytes("RGB", shot.size, shot.rgb)
            image.save(destination, format="JPEG", quality=int(self.jpeg_quality * 100))
        if not destination.exists():
            raise AcquisitionError(AcquisitionErrorKind.FAILED, f"no file written at {destination}")
        logger.debug("Screenshot saved: %s", destination)
        return destination

    def _frontmost_region(self, context: Optional[ActiveContext]) -> Optional[dict]:
        if not self.frontmost_window_only:
            return None
        if context is None or context.rect is None:
            logger.debug("No frontmost window bounds; capturing the full screen")
            return None
        left, top, right, bottom = context.rect
        if right <= left or bottom <= top:
            return None
        return {"left": left, "top": top, "width": right - left, "height": bottom - top}

    def convert_to_final_format(self, path: Path) -> Path:
        """Re-encode a PNG kept for analysis into the configured format."""

        if not self.converts_after_analysis or path.suffix.lower() != ".png":
            return path
        target = path.with_suffix(".jpg")
        with Image.open(path) as image:
            image.convert("RGB").save(target, format="JPEG", quality=int(self.jpeg_quality * 100))
        path.unlink(missing_ok=True)
        return target
