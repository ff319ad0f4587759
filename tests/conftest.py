import cv2
import numpy as np
import pytest


def make_image(width, height, color=(10, 20, 30)):
    """Solid BGR image"""
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, :] = color
    return image


def write_image(path, width=100, height=80, color=(10, 20, 30)):
    image = make_image(width, height, color)
    assert cv2.imwrite(str(path), image)
    return path


@pytest.fixture
def gradient_image():
    """200x200 BGR image with distinct values per pixel"""
    xs = np.arange(200, dtype=np.uint8)
    image = np.zeros((200, 200, 3), dtype=np.uint8)
    image[:, :, 0] = xs[np.newaxis, :]
    image[:, :, 1] = xs[:, np.newaxis]
    image[:, :, 2] = 128
    return image


@pytest.fixture
def image_file(tmp_path):
    return write_image(tmp_path / "sample.png")
