"""
Region Detector - asks a vision-language model for product boxes.

The model is an OpenAI compatible chat-completions endpoint (Qwen-VL on
DashScope by default). It returns free text; core.detection_parser turns
that into Detection records.
"""

import asyncio
import json
from typing import Any, List, Optional

import aiohttp
from loguru import logger

from core.detection_parser import parse_detections
from core.errors import DetectionServiceError
from core.models import Detection


DETECTION_PROMPT = (
    "Detect all distinct e-commerce products. "
    "Output ONLY a valid JSON array. Strict double quotes for all keys and values. "
    "Labels in English. Bounding box in [x1, y1, x2, y2] thousandths of the image "
    "width and height. Tight crop. Completely exclude background. "
    "Do not use markdown formatting. "
    'Example format: [{"label": "Watch", "bbox_2d": [100, 200, 300, 400]}]'
)

RETRY_DELAY_SECONDS = 0.5


class _TransientDetectorError(Exception):
    """Network failure, timeout or 5xx - worth another attempt."""


class RegionDetector:
    """
    Detection adapter.

    Upstream problems surface as DetectionServiceError, unusable text as
    DetectionFormatError (raised by the parser, never retried).
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_url: str,
        api_key: str,
        model: str = "qwen-vl-plus",
        timeout: float = 30.0,
        max_retries: int = 1,
        repair_json: bool = True,
    ):
        self.session = session
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self.repair_json = repair_json

        if not api_key:
            logger.warning("DASHSCOPE_API_KEY not set, detector calls will be rejected upstream")

    def build_payload(self, image_data_uri: str) -> dict:
        return {
            "model": self.model,
            "messages": [{
                "role": "user",
                "content": [
                    {"type": "text", "text": DETECTION_PROMPT},
                    {"type": "image_url", "image_url": {"url": image_data_uri}},
                ],
            }],
        }

    async def detect(self, image_data_uri: str) -> List[Detection]:
        """
        Send the normalized image (as a JPEG data URI) and parse the reply.

        Returns detections in model order, not yet clamped or filtered.
        """
        content = await self._request_content(self.build_payload(image_data_uri))
        detections = parse_detections(content, repair=self.repair_json)
        logger.info(f"Detector returned {len(detections)} object(s)")
        return detections

    async def _request_content(self, payload: dict) -> str:
        last_error: Optional[str] = None

        for attempt in range(self.max_retries + 1):
            try:
                return await self._post_once(payload)
            except _TransientDetectorError as e:
                last_error = str(e)
                logger.warning(f"Detector error (attempt {attempt + 1}/{self.max_retries + 1}): {e}")

            if attempt < self.max_retries:
                await asyncio.sleep(RETRY_DELAY_SECONDS)

        raise DetectionServiceError(f"Detection service unavailable: {last_error}")

    async def _post_once(self, payload: dict) -> str:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with self.session.post(
                self.api_url, json=payload, headers=headers, timeout=timeout
            ) as response:
                status = response.status
                body = await response.text()
        except asyncio.TimeoutError:
            raise _TransientDetectorError(f"timed out after {self.timeout}s")
        except aiohttp.ClientError as e:
            raise _TransientDetectorError(f"connection failed: {e}")

        if status >= 500:
            raise _TransientDetectorError(f"HTTP {status}: {body[:300]}")
        if status != 200:
            raise DetectionServiceError(f"Detection service error ({status}): {body[:300]}")

        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            raise DetectionServiceError("Detection service returned a non-JSON body")

        return extract_message_content(data)


def extract_message_content(data: Any) -> str:
    """choices[0].message.content, flattening list-of-parts content."""
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        raise DetectionServiceError("AI returned an empty or invalid response.")

    if isinstance(content, list):
        content = "".join(
            part.get("text", "") for part in content if isinstance(part, dict)
        )

    if not isinstance(content, str) or not content.strip():
        raise DetectionServiceError("AI returned an empty or invalid response.")
    return content
