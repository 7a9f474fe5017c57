"""
Unit tests for the vision facade, payload parsing and section scoping.
"""
import io
from typing import List

import pytest
from PIL import Image

from mobile_pilot.config.defaults import AppDefaults
from mobile_pilot.core.flows.flow_models import Strategy
from mobile_pilot.services.vision_client import (
    VisionElement,
    VisionResult,
    crop_section,
    downscale_to_jpeg,
    parse_vision_payload,
)
from mobile_pilot.services.vision_service import VisionService, best_text_match, determine_scope_by_y
from mobile_pilot.utils.error_handler import VisionServiceError

from .fake_device import HOME_XML


class FakeVisionClient:
    """Returns fixed detections in the coordinate space of the image it is given"""

    def __init__(self, elements: List[VisionElement]):
        self.elements = elements
        self.calls = []

    def analyze(self, png_bytes, max_side, imgsz, conf, ocr):
        w, h = Image.open(io.BytesIO(png_bytes)).size
        self.calls.append({"size": (w, h), "ocr": ocr, "imgsz": imgsz})
        return VisionResult(image_w=w, image_h=h, elements=[e.model_copy() for e in self.elements])


@pytest.fixture
def vision_settings():
    return AppDefaults(VISION_ENABLED=True)


@pytest.fixture
def settings_client():
    return FakeVisionClient(
        [
            VisionElement(id="t1", type="text", text="Wi-Fi", x=40, y=330, w=560, h=60),
            VisionElement(id="t2", type="text", text="From", x=40, y=100, w=200, h=50),
            VisionElement(id="t3", type="text", text="To", x=40, y=1300, w=200, h=50),
        ]
    )


class TestScope:
    def test_determine_scope_by_y(self):
        assert determine_scope_by_y(500, 100, 1300) == "from"
        assert determine_scope_by_y(1400, 100, 1300) == "to"
        assert determine_scope_by_y(500, 100, None) == "from"
        assert determine_scope_by_y(50, 100, None) is None
        assert determine_scope_by_y(1400, None, 1300) == "to"
        assert determine_scope_by_y(500, None, None) is None


class TestVisionService:
    """Test caching and queries over a fake detector."""

    def test_disabled_without_client(self, settings_device, vision_settings):
        service = VisionService(settings_device, None, vision_settings)
        assert not service.enabled
        assert service.fast() is None

    def test_disabled_by_settings(self, settings_device, settings_client):
        service = VisionService(settings_device, settings_client, AppDefaults(VISION_ENABLED=False))
        assert service.find_text("Wi-Fi") is None
        assert settings_client.calls == []

    def test_fast_is_cached_per_screen_and_section(self, settings_device, settings_client, vision_settings):
        settings_device.add_screen("home", HOME_XML)
        service = VisionService(settings_device, settings_client, vision_settings)

        service.fast()
        service.fast()
        assert len(settings_client.calls) == 1
        assert settings_client.calls[0]["ocr"] is False

        service.fast("from")
        assert len(settings_client.calls) == 2

        settings_device.current = "home"
        service.fast()
        assert len(settings_client.calls) == 3

    def test_slow_is_never_cached(self, settings_device, settings_client, vision_settings):
        service = VisionService(settings_device, settings_client, vision_settings)
        service.slow_for_text()
        service.slow_for_text()
        assert len(settings_client.calls) == 2
        assert settings_client.calls[0]["ocr"] is True

    def test_section_crop_maps_back_to_screen(self, settings_device, settings_client, vision_settings):
        service = VisionService(settings_device, settings_client, vision_settings)
        result = service.fast("to")
        top = int(2400 * 0.45)
        assert settings_client.calls[0]["size"] == (1080, 2400 - top)
        wifi = next(e for e in result.elements if e.text == "Wi-Fi")
        assert wifi.y == 330 + top

    def test_header_rows(self, settings_device, settings_client, vision_settings):
        service = VisionService(settings_device, settings_client, vision_settings)
        headers = service.header_rows()
        assert set(headers) == {"from", "to"}
        assert headers["to"].center == (140, 1325)

    def test_find_toggle_for_label(self, settings_device, settings_client, vision_settings):
        service = VisionService(settings_device, settings_client, vision_settings)
        xpath = service.find_toggle_for_label("wi-fi")
        found = settings_device.find_elements(Strategy.XPATH, xpath)
        assert len(found) == 1
        assert found[0].get_attribute("resource-id") == "com.example.settings:id/wifi_switch"


class TestVisionPayload:
    """Test detector response parsing and image helpers."""

    def test_bbox_and_aliases(self):
        result = parse_vision_payload(
            {
                "image_width": 480,
                "image_height": 1066,
                "detections": [
                    {"bbox": [10, 20, 110, 70], "class": "button", "ocr": "Login", "confidence": 0.9},
                    "garbage",
                ],
            }
        )
        assert (result.image_w, result.image_h) == (480, 1066)
        assert len(result.elements) == 1
        element = result.elements[0]
        assert (element.x, element.y, element.w, element.h) == (10, 20, 100, 50)
        assert element.type == "button"
        assert element.text == "Login"

    def test_rejects_non_object(self):
        with pytest.raises(VisionServiceError):
            parse_vision_payload(["not", "a", "dict"])

    def test_to_screen_scales(self):
        result = VisionResult(image_w=540, image_h=1200, elements=[VisionElement(x=100, y=100, w=50, h=50)])
        mapped = result.to_screen(1080, 0, 2400)
        assert (mapped.elements[0].x, mapped.elements[0].y, mapped.elements[0].w) == (200, 200, 100)

    def test_downscale(self, settings_device):
        jpeg, w, h = downscale_to_jpeg(settings_device.screenshot_png(), 480)
        assert w <= 480 < h
        assert jpeg[:2] == b"\xff\xd8"

    def test_crop_unknown_section(self, settings_device):
        png = settings_device.screenshot_png()
        assert crop_section(png, None) == (png, 1080, 0, 2400)

    def test_best_text_match(self):
        result = VisionResult(
            elements=[VisionElement(text="Dark mode"), VisionElement(text="Wi-Fi settings")]
        )
        assert best_text_match(result, "wi-fi").text == "Wi-Fi settings"
        assert best_text_match(result, "bluetooth") is None
