import base64
import binascii
from dataclasses import dataclass

MAX_IMAGE_BYTES = 10 * 1024 * 1024

ALLOWED_IMAGE_TYPES = {
    "jpeg": "jpg",
    "jpg": "jpg",
    "png": "png",
    "webp": "webp",
    "heic": "heic",
    "heif": "heif",
    "avif": "avif",
    "tiff": "tiff",
    "bmp": "bmp",
    "gif": "gif",
}


@dataclass
class DecodedImage:
    content: bytes
    content_type: str
    extension: str


def decode_image_data_url(data_url: str) -> DecodedImage:
    """Decode a ``data:image/<type>;base64,...`` URL. Raises ValueError on anything else."""
    if not data_url or not data_url.startswith("data:image/"):
        raise ValueError("Invalid image format. Expected a data:image/ URL")

    header, sep, payload = data_url.partition(",")
    if not sep or ";base64" not in header:
        raise ValueError("Image must be base64 encoded")

    content_type = header[len("data:"):].split(";", 1)[0].lower()
    subtype = content_type.split("/", 1)[1]
    if subtype not in ALLOWED_IMAGE_TYPES:
        raise ValueError(f"Unsupported image type: {content_type}")

    # base64 expands by 4/3, reject oversize payloads before decoding
    if len(payload) * 3 // 4 > MAX_IMAGE_BYTES:
        raise ValueError("Image is too large (max 10MB)")

    try:
        content = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("Image data is not valid base64")

    if not content:
        raise ValueError("Image is empty")
    if len(content) > MAX_IMAGE_BYTES:
        raise ValueError("Image is too large (max 10MB)")

    return DecodedImage(content=content, content_type=content_type, extension=ALLOWED_IMAGE_TYPES[subtype])
