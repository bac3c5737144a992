"""
Storage Utility
===============

Shared file upload with cloud (DigitalOcean Spaces) / local branching,
plus Pillow based image processing for featured images and avatars.
"""

import io
import os
import uuid
from urllib.parse import urlparse

import boto3
from flask import current_app
from PIL import Image, UnidentifiedImageError

from .responses import BadRequestError

ALLOWED_IMAGE_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif', 'webp'}

CONTENT_TYPES = {
    'jpg': 'image/jpeg', 'jpeg': 'image/jpeg',
    'png': 'image/png', 'gif': 'image/gif', 'webp': 'image/webp',
}


def allowed_image(filename):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in ALLOWED_IMAGE_EXTENSIONS


def upload_file(file_bytes, filename, subfolder):
    """Upload file to cloud storage or local filesystem.

    Args:
        file_bytes: Raw bytes of the processed file.
        filename: Target filename (e.g. "abc123.jpg").
        subfolder: Subfolder name (e.g. "articles", "avatars").

    Returns:
        Public URL (cloud) or local path like "/uploads/articles/abc.jpg" (local).
    """
    from ..modules.settings.helpers import is_cloud_storage

    if is_cloud_storage():
        return _upload_to_spaces(file_bytes, filename, subfolder)
    return _save_locally(file_bytes, filename, subfolder)


def _spaces_client(config):
    region = config['region']
    return boto3.client(
        's3',
        region_name=region,
        endpoint_url=f"https://{region}.digitaloceanspaces.com",
        aws_access_key_id=config['access_key'],
        aws_secret_access_key=config['secret_key'],
    )


def _upload_to_spaces(file_bytes, filename, subfolder):
    """Upload to DigitalOcean Spaces via boto3."""
    from ..modules.settings.helpers import get_do_spaces_config

    config = get_do_spaces_config()
    app_prefix = current_app.config.get('SPACES_FOLDER', 'uploads')
    object_key = f"{app_prefix}/{subfolder}/{filename}"

    ext = filename.rsplit('.', 1)[-1].lower() if '.' in filename else ''

    _spaces_client(config).put_object(
        Bucket=config['space_name'],
        Key=object_key,
        Body=file_bytes,
        ACL='public-read',
        ContentType=CONTENT_TYPES.get(ext, 'application/octet-stream'),
    )

    return f"https://{_spaces_host(config)}/{object_key}"


def upload_root():
    folder = current_app.config.get('UPLOAD_FOLDER', 'uploads')
    if not os.path.isabs(folder):
        folder = os.path.join(current_app.root_path, folder)
    return folder


def _save_locally(file_bytes, filename, subfolder):
    """Save to the local upload folder (served at /uploads)."""
    upload_dir = os.path.join(upload_root(), subfolder)
    os.makedirs(upload_dir, exist_ok=True)
    with open(os.path.join(upload_dir, filename), 'wb') as f:
        f.write(file_bytes)
    return f"/uploads/{subfolder}/{filename}"


def _spaces_host(config):
    return f"{config['space_name']}.{config['region']}.digitaloceanspaces.com"


def local_upload_path(file_url):
    """
    Filesystem path for a /uploads/... URL, or None when the URL is not a
    local upload or resolves outside the upload folder.
    """
    if not isinstance(file_url, str) or not file_url.startswith('/uploads/'):
        return None
    root = os.path.realpath(upload_root())
    full_path = os.path.realpath(os.path.join(root, file_url[len('/uploads/'):]))
    if full_path == root or os.path.commonpath([root, full_path]) != root:
        return None
    return full_path


def delete_file(file_url):
    """
    Delete an uploaded file by its URL (cloud or local). Only files inside the
    upload folder or the configured Space are touched. Returns True when
    something was removed.
    """
    if not file_url or not isinstance(file_url, str):
        return False

    if 'digitaloceanspaces.com' in file_url:
        from ..modules.settings.helpers import get_do_spaces_config

        config = get_do_spaces_config()
        parsed = urlparse(file_url)
        object_key = parsed.path.lstrip('/')
        prefix = current_app.config.get('SPACES_FOLDER', 'uploads') + '/'
        if not config['space_name'] or parsed.netloc != _spaces_host(config) \
                or not object_key.startswith(prefix) or '..' in object_key.split('/'):
            return False
        _spaces_client(config).delete_object(Bucket=config['space_name'], Key=object_key)
        return True

    full_path = local_upload_path(file_url)
    if full_path and os.path.isfile(full_path):
        os.unlink(full_path)
        return True
    return False


def _to_rgb(img):
    """Any Pillow mode to RGB; 16 and 32 bit integer images are scaled down to 8 bit first"""
    if img.mode == 'RGB':
        return img
    if img.mode.startswith('I'):
        img = img.convert('I').point(lambda v: v * (1 / 256)).convert('L')
    elif img.mode == 'F':
        img = img.convert('L')
    return img.convert('RGB')


def process_image(file_bytes, max_width=1600, square=None, fmt='JPEG'):
    """
    Normalise an uploaded image: convert to RGB, downscale to max_width
    (or centre-crop to a square of the given size) and re-encode.
    Returns (bytes, extension).
    """
    try:
        img = Image.open(io.BytesIO(file_bytes))
        img.load()
    except (UnidentifiedImageError, OSError):
        raise BadRequestError('Invalid image file')

    try:
        img = _to_rgb(img)
    except (ValueError, OSError):
        raise BadRequestError('Unsupported image format')

    if square:
        side = min(img.size)
        left = (img.width - side) // 2
        top = (img.height - side) // 2
        img = img.crop((left, top, left + side, top + side)).resize((square, square), Image.LANCZOS)
    elif img.width > max_width:
        ratio = max_width / float(img.width)
        img = img.resize((max_width, int(img.height * ratio)), Image.LANCZOS)

    buf = io.BytesIO()
    img.save(buf, format=fmt, quality=85)
    return buf.getvalue(), 'webp' if fmt.upper() == 'WEBP' else 'jpg'


def save_uploaded_image(file_storage, subfolder, **process_kwargs):
    """Validate a werkzeug FileStorage, process it and upload. Returns the public URL."""
    if file_storage is None or not file_storage.filename:
        raise BadRequestError('No file selected')
    if not allowed_image(file_storage.filename):
        raise BadRequestError('Invalid file type')

    data, ext = process_image(file_storage.read(), **process_kwargs)
    return upload_file(data, f"{uuid.uuid4().hex}.{ext}", subfolder)
