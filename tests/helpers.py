"""
Test doubles and image helpers.

Upstream services are replaced by FakeSession, which mimics the small part
of aiohttp.ClientSession the clients use (post/get as async context
managers returning a response with status/text/read).
"""
import base64
import io
import json

import numpy as np
from PIL import Image


EMBEDDING_DIM = 8


class FakeStream:
    """Stands in for aiohttp's StreamReader; counts what was consumed."""

    def __init__(self, raw):
        self._raw = raw
        self.bytes_read = 0

    async def iter_chunked(self, size):
        for start in range(0, len(self._raw), size):
            chunk = self._raw[start:start + size]
            self.bytes_read += len(chunk)
            yield chunk


class FakeResponse:
    def __init__(self, status=200, payload=None, body=None, raw=None, content_length=None):
        self.status = status
        if body is None:
            body = json.dumps(payload) if payload is not None else ""
        self._body = body
        self._raw = raw if raw is not None else body.encode("utf-8")
        self.content_length = content_length if content_length is not None else len(self._raw)
        self.content = FakeStream(self._raw)

    async def text(self):
        return self._body

    async def read(self):
        return self._raw

    async def json(self):
        return json.loads(self._body)


class _RequestContext:
    def __init__(self, outcome):
        self.outcome = outcome

    async def __aenter__(self):
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """
    Either a queue of responses/exceptions, or a handler(method, url, kwargs)
    returning one. Every call is recorded in ``calls``.
    """

    def __init__(self, responses=None, handler=None):
        self.responses = list(responses or [])
        self.handler = handler
        self.calls = []

    def _request(self, method, url, kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if self.handler is not None:
            outcome = self.handler(method, url, kwargs)
        else:
            outcome = self.responses.pop(0)
        return _RequestContext(outcome)

    def post(self, url, **kwargs):
        return self._request("POST", url, kwargs)

    def get(self, url, **kwargs):
        return self._request("GET", url, kwargs)


def make_image(width=200, height=100, color=(255, 255, 255)):
    return Image.new("RGB", (width, height), color)


def image_bytes(image, fmt="PNG"):
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def image_base64(image, fmt="PNG", data_uri=False):
    encoded = base64.b64encode(image_bytes(image, fmt)).decode("utf-8")
    if data_uri:
        return f"data:image/{fmt.lower()};base64,{encoded}"
    return encoded


def chat_completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def decode_data_uri(data_uri):
    payload = data_uri.split(",", 1)[1]
    return Image.open(io.BytesIO(base64.b64decode(payload))).convert("RGB")


def dominant_channel(image):
    """0 = red, 1 = green, 2 = blue."""
    means = np.asarray(image, dtype=np.float32).reshape(-1, 3).mean(axis=0)
    return int(np.argmax(means))


def tagged_vector(channel, dim=EMBEDDING_DIM):
    vector = [0.0] * dim
    vector[channel] = 1.0
    return vector

