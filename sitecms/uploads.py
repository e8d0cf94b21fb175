"""Image uploads sent as base64 data URLs by the admin UI."""
import base64
import binascii
import io
import os
import re
import uuid

from flask import current_app
from PIL import Image, UnidentifiedImageError
from werkzeug.utils import secure_filename

from .errors import InvalidUpload

DEFAULT_FOLDER = 'portfolio'
DATA_URL_RE = re.compile(r'^data:(image/[a-z0-9.+-]+);base64,(.+)$', re.IGNORECASE | re.DOTALL)
IMAGE_FORMAT_EXTENSIONS = {
    'PNG': 'png',
    'JPEG': 'jpg',
    'GIF': 'gif',
    'WEBP': 'webp',
    'ICO': 'ico',
}


def decode_data_url(value):
    match = DATA_URL_RE.match((value or '').strip())
    if not match:
        raise InvalidUpload('Image must be a base64 data URL.')
    try:
        return base64.b64decode(match.group(2), validate=True)
    except (binascii.Error, ValueError):
        raise InvalidUpload('Image data is not valid base64.') from None


def inspect_image(raw, max_pixels):
    """Return the file extension for ``raw`` or raise InvalidUpload."""
    try:
        with Image.open(io.BytesIO(raw)) as image:
            width, height = image.size
            if width < 1 or height < 1 or (width * height) > max_pixels:
                raise InvalidUpload('Image dimensions are not allowed.')
            image_format = image.format
            image.verify()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError):
        raise InvalidUpload('Invalid image upload.') from None
    extension = IMAGE_FORMAT_EXTENSIONS.get(image_format or '')
    if not extension:
        raise InvalidUpload('Unsupported image format.')
    return extension


def safe_folder(folder):
    parts = [secure_filename(part) for part in (folder or DEFAULT_FOLDER).replace('\\', '/').split('/')]
    parts = [part for part in parts if part]
    return '/'.join(parts) or DEFAULT_FOLDER


def save_image(data_url, folder=None):
    raw = decode_data_url(data_url)
    max_pixels = max(1, int(current_app.config.get('MAX_UPLOAD_IMAGE_PIXELS', 40_000_000)))
    extension = inspect_image(raw, max_pixels)

    relative_folder = safe_folder(folder)
    target_dir = os.path.join(current_app.config['UPLOAD_FOLDER'], *relative_folder.split('/'))
    os.makedirs(target_dir, exist_ok=True)
    filename = f'{uuid.uuid4().hex}.{extension}'
    with open(os.path.join(target_dir, filename), 'wb') as handle:
        handle.write(raw)

    current_app.logger.info(f'Stored upload {relative_folder}/{filename} ({len(raw)} bytes).')
    prefix = current_app.config.get('UPLOAD_URL_PREFIX', '/uploads').rstrip('/')
    return f'{prefix}/{relative_folder}/{filename}'
