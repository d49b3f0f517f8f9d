"""Path-addressed object storage kept on local disk, one directory per bucket.

Private buckets are only reachable through signed, time-limited URLs; public
buckets are served directly.
"""
import logging
import os
import secrets
from datetime import datetime, timezone

from itsdangerous import BadSignature, URLSafeTimedSerializer
from werkzeug.utils import safe_join, secure_filename

from errors import NotFound, UploadFailed

logger = logging.getLogger(__name__)

SUBMISSIONS_BUCKET = 'submissions'
RIDDLE_IMAGES_BUCKET = 'riddle-images'
PUBLIC_BUCKETS = {RIDDLE_IMAGES_BUCKET}
BUCKETS = (SUBMISSIONS_BUCKET, RIDDLE_IMAGES_BUCKET)

ALLOWED_IMAGE_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif', 'webp', 'heic'}


def build_object_path(prefix, filename):
    """Return ``{prefix}/{random_token}.{ext}`` for an uploaded image name."""
    filename = secure_filename(filename or '')
    ext = filename.rsplit('.', 1)[-1].lower() if '.' in filename else ''
    if ext not in ALLOWED_IMAGE_EXTENSIONS:
        allowed = ', '.join(sorted(ALLOWED_IMAGE_EXTENSIONS))
        raise UploadFailed(f'Invalid image type. Allowed: {allowed}.')
    return f'{prefix}/{secrets.token_hex(16)}.{ext}'


class ObjectStorage:
    def __init__(self, app=None):
        self.root = None
        self.default_expiry = 24 * 60 * 60
        self.serializer = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.root = app.config['STORAGE_ROOT']
        self.default_expiry = app.config.get('SIGNED_URL_EXPIRY_SECONDS', self.default_expiry)
        self.serializer = URLSafeTimedSerializer(app.config['SECRET_KEY'], salt='storage-signed-url')
        for bucket in BUCKETS:
            os.makedirs(os.path.join(self.root, bucket), exist_ok=True)

    def _full_path(self, bucket, path):
        if bucket not in BUCKETS:
            raise NotFound(f'Unknown bucket: {bucket}')
        full_path = safe_join(os.path.join(self.root, bucket), path)
        if full_path is None:
            raise NotFound('Object not found.')
        return full_path

    def upload(self, bucket, path, file):
        """Store a werkzeug ``FileStorage`` (or any object with ``save``) at ``path``."""
        full_path = self._full_path(bucket, path)
        try:
            os.makedirs(os.path.dirname(full_path), exist_ok=True)
            file.save(full_path)
        except OSError as e:
            logger.error(f"Upload of {bucket}/{path} failed: {e}")
            raise UploadFailed() from e
        logger.info(f"Stored object {bucket}/{path}")
        return path

    def remove(self, bucket, path):
        full_path = self._full_path(bucket, path)
        try:
            os.remove(full_path)
        except FileNotFoundError:
            logger.warning(f"Object {bucket}/{path} was already gone")
        except OSError as e:
            logger.error(f"Could not remove {bucket}/{path}: {e}")
        else:
            logger.info(f"Removed object {bucket}/{path}")

    def exists(self, bucket, path):
        return os.path.isfile(self._full_path(bucket, path))

    def locate(self, bucket, path):
        full_path = self._full_path(bucket, path)
        if not os.path.isfile(full_path):
            raise NotFound('Object not found.')
        return full_path

    def public_url(self, bucket, path):
        if bucket not in PUBLIC_BUCKETS:
            raise ValueError(f'Bucket {bucket} is private')
        return f'/storage/public/{bucket}/{path}'

    def create_signed_url(self, bucket, path, expires_in=None):
        expires_in = expires_in or self.default_expiry
        token = self.serializer.dumps({'bucket': bucket, 'path': path, 'expires_in': expires_in})
        return f'/storage/signed/{token}'

    def resolve_signed_token(self, token, now=None):
        """Return ``(bucket, path)`` for a signed URL token that has not expired."""
        try:
            data, signed_at = self.serializer.loads(token, return_timestamp=True)
        except BadSignature:
            raise NotFound('Invalid link.')
        now = now or datetime.now(timezone.utc)
        if (now - signed_at).total_seconds() > data['expires_in']:
            raise NotFound('This link has expired.')
        return data['bucket'], data['path']


storage = ObjectStorage()
