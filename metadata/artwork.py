import io
import logging

from PIL import Image
import requests

from config.settings import THUMBNAIL_TIMEOUT_SECONDS

COVER_SIZE_PX = 600


def fetch_thumbnail(url, timeout=THUMBNAIL_TIMEOUT_SECONDS):
    """Download a thumbnail; raises ``requests.RequestException`` on failure."""
    resp = requests.get(url, timeout=timeout)
    resp.raise_for_status()
    if not resp.content:
        raise ValueError(f"empty thumbnail response from {url}")
    return resp.content


def square_cover(data, size=COVER_SIZE_PX):
    """Letterbox an image onto a black square and return JPEG bytes.

    Video thumbnails are 16:9; most players expect square cover art.
    """
    image = Image.open(io.BytesIO(data)).convert("RGB")
    image.thumbnail((size, size))
    canvas = Image.new("RGB", (size, size), (0, 0, 0))
    canvas.paste(image, ((size - image.width) // 2, (size - image.height) // 2))
    output = io.BytesIO()
    canvas.save(output, format="JPEG", quality=90)
    logging.debug("Cover normalized to %sx%s", size, size)
    return output.getvalue()
