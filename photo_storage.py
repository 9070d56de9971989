"""
Local file storage for stage evidence photos.

Paths are relative to the storage root (e.g. ``pickups/ORD261019-001.jpg``)
and are what gets recorded on OrderPhoto rows.
"""
import os
import logging
from io import BytesIO

from PIL import Image, UnidentifiedImageError

from domain_errors import PhotoStorageError, ValidationFailed

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {'jpg', 'jpeg', 'png', 'webp'}
MAX_PHOTO_BYTES = 5 * 1024 * 1024


def allowed_file(filename):
    return bool(filename) and '.' in filename and filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS


def extension_of(filename):
    return filename.rsplit('.', 1)[1].lower()


class LocalPhotoStorage:
    def __init__(self, root):
        self.root = root

    def _absolute(self, relative_path):
        full = os.path.abspath(os.path.join(self.root, relative_path))
        if not full.startswith(os.path.abspath(self.root) + os.sep):
            raise PhotoStorageError('Lokasi foto tidak valid')
        return full

    def validate(self, upload):
        """
        Read and check an uploaded photo (werkzeug FileStorage or similar).

        Returns ``(data, extension)``. Raises ValidationFailed for a missing,
        oversized, wrongly typed or undecodable image.
        """
        if upload is None or not getattr(upload, 'filename', None):
            raise ValidationFailed({'photo': 'Foto harus diisi'})
        if not allowed_file(upload.filename):
            raise ValidationFailed({
                'photo': f"Foto harus berupa salah satu dari: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
            })
        data = upload.read()
        if not data:
            raise ValidationFailed({'photo': 'Foto kosong'})
        if len(data) > MAX_PHOTO_BYTES:
            raise ValidationFailed({'photo': 'Foto maksimal 5MB'})
        try:
            with Image.open(BytesIO(data)) as img:
                img.verify()
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            logger.warning(f"Rejected unreadable photo {upload.filename}: {e}")
            raise ValidationFailed({'photo': 'File bukan gambar yang valid'})
        return data, extension_of(upload.filename)

    def save(self, data, relative_path):
        """Write bytes under the storage root; an existing file at the same path is replaced."""
        full = self._absolute(relative_path)
        try:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, 'wb') as fh:
                fh.write(data)
        except OSError as e:
            logger.error(f"Error storing photo {relative_path}: {str(e)}")
            raise PhotoStorageError()
        logger.info(f"Stored photo {relative_path} ({len(data)} bytes)")
        return relative_path

    def exists(self, relative_path):
        return os.path.isfile(self._absolute(relative_path))

    def delete(self, relative_path):
        """Remove a stored photo; a missing file is not an error."""
        full = self._absolute(relative_path)
        try:
            os.remove(full)
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"Error removing photo {relative_path}: {str(e)}")
            return False
        logger.info(f"Removed photo {relative_path}")
        return True

    def move(self, source_path, target_path):
        """Put a stored photo at ``target_path``, replacing whatever is there."""
        source = self._absolute(source_path)
        target = self._absolute(target_path)
        try:
            os.makedirs(os.path.dirname(target), exist_ok=True)
            os.replace(source, target)
        except OSError as e:
            logger.error(f"Error moving photo {source_path} to {target_path}: {str(e)}")
            raise PhotoStorageError()
        return target_path
