"""Screenshot decoding into the encoder's raw RGBA frame format."""

from io import BytesIO

from PIL import Image, UnidentifiedImageError

from vtcapture.errors import CaptureError


def png_to_rgba(png_bytes: bytes, width: int, height: int) -> bytes:
    """
    Decode a PNG screenshot into exactly width*height*4 bytes of RGBA.

    The encoder's frame size is fixed at spawn, so a capture region that
    changed size under animation is placed at the top-left of a transparent
    canvas of the configured size (cropped if larger). Pixels are never
    rescaled.

    Raises:
        CaptureError: If the bytes are not a decodable image
    """
    try:
        with Image.open(BytesIO(png_bytes)) as image:
            frame = image.convert("RGBA")
    except (UnidentifiedImageError, OSError) as e:
        raise CaptureError("Screenshot could not be decoded", cause=e) from e

    if frame.size != (width, height):
        canvas = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        canvas.paste(frame.crop((0, 0, min(frame.width, width), min(frame.height, height))), (0, 0))
        frame = canvas

    return frame.tobytes()
