from abc import ABC, abstractmethod

import numpy as np

from ..tp_types import DecodedFrame

# ITU-R BT.601 luma weights, see https://en.wikipedia.org/wiki/Luma_(video)
WEIGHT_R = 0.299
WEIGHT_G = 0.587
WEIGHT_B = 0.114

_CHANNELS = {"rgb": (0, 1, 2), "bgr": (2, 1, 0)}


def to_luma(image, channel_order: str = "rgb") -> np.ndarray:
    """Collapse an interleaved (H, W, 3) uint8 image to an (H, W) luma buffer.

    The weighted sum is truncated, not rounded, so white maps to 254. The result
    is C-contiguous: flat offset ``y*width + x`` is pixel (x, y), the same
    scan order as the input.
    """
    try:
        ri, gi, bi = _CHANNELS[channel_order.lower()]
    except KeyError:
        raise ValueError(f"unknown channel order: {channel_order!r}") from None

    img = np.asarray(image)
    if img.ndim != 3 or img.shape[2] != 3:
        raise ValueError(f"expected (H, W, 3) image, got shape {img.shape}")

    if img.size == 0:
        return np.zeros(img.shape[:2], dtype=np.uint8)

    r = img[:, :, ri].astype(np.float64)
    g = img[:, :, gi].astype(np.float64)
    b = img[:, :, bi].astype(np.float64)
    luma = WEIGHT_R * r + WEIGHT_G * g + WEIGHT_B * b
    return np.ascontiguousarray(np.floor(luma).astype(np.uint8))


class SampleStrategy(ABC):
    @abstractmethod
    def apply(self, f: DecodedFrame) -> np.ndarray: ...


class LumaConvert(SampleStrategy):
    def apply(self, f: DecodedFrame) -> np.ndarray:
        return to_luma(f.image, f.channel_order)
