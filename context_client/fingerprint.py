"""Perceptual fingerprints (difference hash) and their Hamming distance."""

import imagehash
from PIL import Image


def fingerprint(image: Image.Image, hash_size: int = 8) -> imagehash.ImageHash:
    """Returns a hash_size x hash_size dHash of the image."""
    return imagehash.dhash(image, hash_size=hash_size)


def distance(a: imagehash.ImageHash, b: imagehash.ImageHash) -> int:
    """Number of differing bits. 0 means identical."""
    return int(a - b)


def max_distance(fp: imagehash.ImageHash) -> int:
    """Largest possible distance for fingerprints of this size."""
    return int(fp.hash.size)
