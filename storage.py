import logging
import os
import re
import uuid
from datetime import datetime, timedelta

import jwt

from errors import Forbidden, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024
KEY_PREFIX = 'uploads/'
_KEY_RE = re.compile(r'^uploads/[0-9a-f]{32}-[A-Za-z0-9._\-]*$')


def sanitize_filename(filename):
    cleaned = re.sub(r'[^a-zA-Z0-9._\-\s]', '', filename or '')
    return re.sub(r'\s+', '_', cleaned.strip())


class ObjectStorage:

    def __init__(self, root, secret, base_url, public_url_base=None, expires_in=300):
        self.root = root
        self.secret = secret
        self.base_url = base_url.rstrip('/')
        self.public_url_base = (public_url_base or f'{self.base_url}/files').rstrip('/')
        self.expires_in = expires_in
        os.makedirs(os.path.join(self.root, KEY_PREFIX), exist_ok=True)

    def issue_upload(self, filename, content_type):
        if not filename or not content_type:
            raise ValidationFailed('filename and contentType are required')
        key = f'{KEY_PREFIX}{uuid.uuid4().hex}-{sanitize_filename(filename)}'
        payload = {
            'key': key,
            'ct': content_type,
            'purpose': 'upload',
            'exp': datetime.utcnow() + timedelta(seconds=self.expires_in),
        }
        credential = jwt.encode(payload, self.secret, algorithm='HS256')
        upload_url = f'{self.base_url}/api/uploads/{key}'
        logger.debug('Issued upload credential for %s', key)
        return {
            'credential': credential,
            'object_key': key,
            'public_url': self.public_url(key),
            'upload_url': upload_url,
            'presigned_url': f'{upload_url}?credential={credential}',
            'method': 'PUT',
            'expires_in': self.expires_in,
        }

    def public_url(self, key):
        return f'{self.public_url_base}/{key}'

    def verify(self, key, credential, content_type=None):
        if not credential:
            raise Forbidden('upload credential required')
        try:
            claims = jwt.decode(credential, self.secret, algorithms=['HS256'])
        except jwt.InvalidTokenError as e:
            raise Forbidden('upload credential invalid or expired', reason=str(e))
        if claims.get('purpose') != 'upload' or claims.get('key') != key:
            raise Forbidden('upload credential does not match object')
        if content_type is not None and claims.get('ct') != content_type:
            raise Forbidden('content type does not match upload credential')
        return claims

    def put(self, key, data, content_type, credential):
        self.verify(key, credential, content_type)
        if len(data) > MAX_FILE_SIZE:
            raise ValidationFailed('file too large', errors={'file': [f'max {MAX_FILE_SIZE} bytes']})
        path = self.path_for(key)
        with open(path, 'wb') as fh:
            fh.write(data)
        logger.info('Stored object %s (%d bytes)', key, len(data))
        return {'object_key': key, 'size': len(data)}

    def path_for(self, key):
        if not key or not _KEY_RE.match(key):
            raise NotFound('object not found')
        return os.path.join(self.root, *key.split('/'))

    def exists(self, key):
        try:
            return os.path.exists(self.path_for(key))
        except NotFound:
            return False

    def delete(self, key):
        """Remove an object. Deleting a missing object is not an error."""
        path = self.path_for(key)
        try:
            os.remove(path)
            logger.info('Deleted object %s', key)
        except FileNotFoundError:
            logger.debug('Object %s already absent', key)
