"""
Shared fixtures for visual search tests.
"""
import pytest

from tests.helpers import image_bytes, make_image


@pytest.fixture
def red_blue_image():
    """400x200: left half red, right half blue."""
    img = make_image(400, 200, (0, 0, 255))
    img.paste((255, 0, 0), (0, 0, 200, 200))
    return img


@pytest.fixture
def red_green_blue_image():
    """600x200: red, green, blue vertical thirds."""
    img = make_image(600, 200, (0, 0, 255))
    img.paste((255, 0, 0), (0, 0, 200, 200))
    img.paste((0, 255, 0), (200, 0, 400, 200))
    return img


@pytest.fixture
def sample_crop_bytes():
    return image_bytes(make_image(50, 50, (255, 0, 0)), fmt="JPEG")
