"""Shared fixtures for the context_client tests."""

import imagehash
import numpy as np
from PIL import Image

from context_client.gate import Sample


def make_fp(ones: int, size: int = 8) -> imagehash.ImageHash:
    """Fingerprint whose first `ones` bits are set; distance(a, b) = |a - b|."""
    bits = np.zeros(size * size, dtype=bool)
    bits[:ones] = True
    return imagehash.ImageHash(bits.reshape(size, size))


def make_sample(ones: int = 0, label: str | None = None, ts: float = 0.0) -> Sample:
    return Sample(image=Image.new("RGB", (16, 16)), fingerprint=make_fp(ones),
                  source_label=label, captured_at=ts)
