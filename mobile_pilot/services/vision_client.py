"""
Vision Client - HTTP client for the external UI detector

POST {url}/analyze?imgsz=<n>&conf=<f>&ocr=<0|1> with the screenshot as a
multipart "image" JPEG. The detector answers with the analysed image size and a
list of labelled boxes. Any transport or parsing failure yields None so callers
fall back to UI-tree resolution.
"""

import io
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx
from PIL import Image
from pydantic import BaseModel, ConfigDict, Field

from mobile_pilot.config.defaults import AppDefaults, get_defaults
from mobile_pilot.utils.error_handler import VisionServiceError

logger = logging.getLogger(__name__)

JPEG_QUALITY = 85

# Fraction of the screen height kept for each section
SECTION_CROPS = {
    "from": (0.0, 0.55),
    "to": (0.45, 1.0),
}


class VisionElement(BaseModel):
    """One detected box, in the coordinate space of its VisionResult"""
    id: str = ""
    type: str = ""
    text: str = ""
    x: int = 0
    y: int = 0
    w: int = 0
    h: int = 0
    score: float = 0.0

    @property
    def center(self) -> Tuple[int, int]:
        return self.x + self.w // 2, self.y + self.h // 2


class VisionResult(BaseModel):
    """Detector answer: analysed image size plus detections"""

    model_config = ConfigDict(populate_by_name=True)

    image_w: int = Field(0, alias="imageW")
    image_h: int = Field(0, alias="imageH")
    elements: List[VisionElement] = Field(default_factory=list)

    def to_screen(self, screen_w: int, crop_top: int, crop_h: int) -> "VisionResult":
        """Map detections from the analysed (downscaled, cropped) image back to screen pixels."""
        if not self.image_w or not self.image_h:
            return self
        sx = screen_w / self.image_w
        sy = crop_h / self.image_h
        mapped = [
            e.model_copy(
                update={
                    "x": int(e.x * sx),
                    "y": int(e.y * sy) + crop_top,
                    "w": int(e.w * sx),
                    "h": int(e.h * sy),
                }
            )
            for e in self.elements
        ]
        return VisionResult(image_w=screen_w, image_h=crop_top + crop_h, elements=mapped)


# =============================================================================
# Image helpers
# =============================================================================

def downscale_to_jpeg(png_bytes: bytes, max_side: int) -> Tuple[bytes, int, int]:
    """
    Re-encode a screenshot as JPEG, shrinking it so its short side is at most max_side.

    Returns (jpeg_bytes, width, height) of the encoded image.
    """
    img = Image.open(io.BytesIO(png_bytes))
    w, h = img.size
    short = min(w, h)
    if max_side > 0 and short > max_side:
        scale = max_side / short
        img = img.resize((max(1, int(w * scale)), max(1, int(h * scale))), Image.LANCZOS)

    # JPEGs don't support RGBA
    if img.mode != "RGB":
        img = img.convert("RGB")

    buffer = io.BytesIO()
    img.save(buffer, format="JPEG", quality=JPEG_QUALITY)
    return buffer.getvalue(), img.size[0], img.size[1]


def crop_section(png_bytes: bytes, section: Optional[str]) -> Tuple[bytes, int, int, int]:
    """
    Crop a screenshot to a screen section.

    Returns (png_bytes, screen_width, crop_top, crop_height). Unknown or empty
    sections return the full image.
    """
    img = Image.open(io.BytesIO(png_bytes))
    w, h = img.size
    bounds = SECTION_CROPS.get((section or "").lower())
    if bounds is None:
        return png_bytes, w, 0, h
    top, bottom = int(h * bounds[0]), int(h * bounds[1])
    cropped = img.crop((0, top, w, bottom))
    buffer = io.BytesIO()
    cropped.save(buffer, format="PNG")
    return buffer.getvalue(), w, top, bottom - top


# =============================================================================
# Response parsing
# =============================================================================

def _as_int(value: Any) -> int:
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return 0


def parse_vision_payload(payload: Any) -> VisionResult:
    """
    Lenient parse of a detector response.

    Accepts "elements" or "detections" lists; boxes as x/y/w/h or bbox [x1, y1, x2, y2];
    text under "text", "ocr" or "label".
    """
    if not isinstance(payload, dict):
        raise VisionServiceError(f"Unexpected vision payload type: {type(payload).__name__}")

    raw_elements = payload.get("elements") or payload.get("detections") or []
    elements: List[VisionElement] = []
    for i, raw in enumerate(raw_elements):
        if not isinstance(raw, dict):
            continue
        bbox = raw.get("bbox")
        if isinstance(bbox, (list, tuple)) and len(bbox) == 4:
            x1, y1, x2, y2 = (_as_int(v) for v in bbox)
            x, y, w, h = x1, y1, x2 - x1, y2 - y1
        else:
            x, y = _as_int(raw.get("x")), _as_int(raw.get("y"))
            w = _as_int(raw.get("w", raw.get("width")))
            h = _as_int(raw.get("h", raw.get("height")))
        elements.append(
            VisionElement(
                id=str(raw.get("id", f"v{i}")),
                type=str(raw.get("type") or raw.get("class") or ""),
                text=str(raw.get("text") or raw.get("ocr") or raw.get("label") or ""),
                x=x, y=y, w=w, h=h,
                score=float(raw.get("score") or raw.get("confidence") or 0.0),
            )
        )

    return VisionResult(
        image_w=_as_int(payload.get("imageW", payload.get("image_width"))),
        image_h=_as_int(payload.get("imageH", payload.get("image_height"))),
        elements=elements,
    )


# =============================================================================
# Client
# =============================================================================

class VisionClient:
    """Blocking HTTP client for the detector service"""

    def __init__(self, base_url: Optional[str] = None, settings: Optional[AppDefaults] = None):
        self.settings = settings or get_defaults()
        self.base_url = (base_url or self.settings.VISION_SERVER_URL).rstrip("/")
        self.timeout = httpx.Timeout(
            self.settings.VISION_READ_TIMEOUT, connect=self.settings.VISION_CONNECT_TIMEOUT
        )

    def analyze(
        self,
        png_bytes: bytes,
        max_side: int,
        imgsz: int,
        conf: float,
        ocr: bool,
    ) -> Optional[VisionResult]:
        """Detect UI elements in a screenshot. Returns None on any failure."""
        if not png_bytes:
            return None
        try:
            jpeg, w, h = downscale_to_jpeg(png_bytes, max_side)
            params: Dict[str, Any] = {"imgsz": imgsz, "conf": conf, "ocr": 1 if ocr else 0}
            files = {"image": ("screenshot.jpg", jpeg, "image/jpeg")}
            response = httpx.post(
                f"{self.base_url}/analyze", params=params, files=files, timeout=self.timeout
            )
            response.raise_for_status()
            result = parse_vision_payload(response.json())
            if not result.image_w or not result.image_h:
                result = result.model_copy(update={"image_w": w, "image_h": h})
            logger.debug(f"[VisionClient] {len(result.elements)} elements (ocr={ocr})")
            return result
        except httpx.HTTPError as e:
            logger.warning(f"[VisionClient] Detector unreachable at {self.base_url}: {e}")
            return None
        except (VisionServiceError, ValueError, OSError) as e:
            logger.warning(f"[VisionClient] Bad detector response: {e}")
            return None
