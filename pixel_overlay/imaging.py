"""Raster codec helpers: bytes / base64 <-> RGBA numpy arrays."""

import base64
import binascii
from io import BytesIO
from typing import Tuple, Union

import cv2
import numpy as np
from PIL import Image

ImageSource = Union[bytes, bytearray, np.ndarray, Image.Image]


def to_rgba(source: ImageSource) -> np.ndarray:
    """Load any supported image source as an ``H x W x 4`` uint8 array."""
    if isinstance(source, np.ndarray):
        img = source
        if img.ndim == 2:
            img = np.stack([img, img, img], axis=-1)
        if img.shape[2] == 3:
            alpha = np.full(img.shape[:2] + (1,), 255, dtype=np.uint8)
            img = np.concatenate([img.astype(np.uint8), alpha], axis=2)
        return np.ascontiguousarray(img, dtype=np.uint8)

    if isinstance(source, (bytes, bytearray)):
        pil = Image.open(BytesIO(bytes(source)))
    else:
        pil = source
    return np.array(pil.convert("RGBA"))


def encode_png(img: np.ndarray) -> bytes:
    """Encode an RGBA array as PNG bytes."""
    buf = BytesIO()
    Image.fromarray(img).save(buf, format="PNG")
    return buf.getvalue()


def encode_base64_png(img: np.ndarray) -> str:
    """Encode an RGBA array as a base64 PNG string (no data-URL prefix)."""
    return base64.b64encode(encode_png(img)).decode("utf-8")


def decode_base64_image(text: str) -> np.ndarray:
    """Decode a base64 image string, with or without a ``data:`` URL prefix.

    Raises:
        ValueError: if the text is not valid base64 or not a readable image.
    """
    if text.startswith("data:"):
        _, _, text = text.partition(",")
    try:
        raw = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Invalid base64 image data: {exc}") from exc
    try:
        return to_rgba(raw)
    except OSError as exc:
        raise ValueError(f"Unreadable image data: {exc}") from exc


def resize_nearest(img: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    """Nearest-neighbour resize to ``(width, height)``."""
    w, h = size
    src_h, src_w = img.shape[:2]
    if src_w == w and src_h == h:
        return img.copy()
    if w % src_w == 0 and h % src_h == 0 and w // src_w == h // src_h:
        return upscale_nearest(img, w // src_w)
    return cv2.resize(img, (w, h), interpolation=cv2.INTER_NEAREST)


def upscale_nearest(img: np.ndarray, scale: int) -> np.ndarray:
    """Blow up every pixel into a ``scale x scale`` block."""
    if scale == 1:
        return img.copy()
    return np.repeat(np.repeat(img, scale, axis=0), scale, axis=1)
