import logging
import uuid
from concurrent.futures import ThreadPoolExecutor

import requests

from errors import ValidationFailed
from lifecycle import MAX_ATTACHMENTS
from storage import MAX_FILE_SIZE

logger = logging.getLogger(__name__)

PENDING = 'pending'
UPLOADING = 'uploading'
SUCCESS = 'success'
ERROR = 'error'


def api_credentials(base_url, token, http=None, timeout=10):
    """Credential source backed by the helpdesk API's presigned-url endpoint."""
    http = http or requests.Session()

    def request_credential(filename, content_type):
        resp = http.get(f"{base_url.rstrip('/')}/api/upload/presigned-url",
                        params={'filename': filename, 'content_type': content_type},
                        headers={'Authorization': f'Bearer {token}'},
                        timeout=timeout)
        if resp.status_code != 200:
            raise RuntimeError(f'credential request failed ({resp.status_code}): {resp.text}')
        return resp.json()
    return request_credential


class FileUpload:

    def __init__(self, name, data, content_type=None):
        self.id = uuid.uuid4().hex
        self.name = name
        self.data = data
        self.content_type = content_type or 'application/octet-stream'
        self.status = PENDING
        self.error = None
        self.attachment = None

    def __repr__(self):
        return f'<FileUpload {self.name} {self.status}>'


class UploadBatch:

    def __init__(self, request_credential, http=None, max_files=MAX_ATTACHMENTS, max_workers=3, timeout=30):
        self.request_credential = request_credential
        self.http = http or requests.Session()
        self.max_files = max_files
        self.max_workers = max_workers
        self.timeout = timeout
        self.files = []

    def add(self, name, data, content_type=None):
        if len(self.files) >= self.max_files:
            raise ValidationFailed(f'You can upload a maximum of {self.max_files} files.')
        if len(data) > MAX_FILE_SIZE:
            raise ValidationFailed(f'{name} exceeds the {MAX_FILE_SIZE // (1024 * 1024)}MB size limit.')
        item = FileUpload(name, data, content_type)
        self.files.append(item)
        return item

    def remove(self, item_id):
        self.files = [f for f in self.files if f.id != item_id]

    def upload(self, item):
        if item.status in (UPLOADING, SUCCESS):
            return item
        item.status = UPLOADING
        item.error = None
        try:
            grant = self.request_credential(item.name, item.content_type)
            resp = self.http.put(grant['presigned_url'], data=item.data,
                                 headers={'Content-Type': item.content_type}, timeout=self.timeout)
            if resp.status_code >= 400:
                raise RuntimeError(f'upload of {item.name} failed ({resp.status_code}): {resp.text}')
        except Exception as e:
            item.status = ERROR
            item.error = str(e)
            logger.warning('Upload of %s failed: %s', item.name, e)
            return item
        item.attachment = {
            'id': uuid.uuid4().hex,
            'name': item.name,
            'url': grant['public_url'],
            'type': item.content_type,
            'size': len(item.data),
            'file_key': grant['object_key'],
        }
        item.status = SUCCESS
        return item

    def start(self):
        pending = [f for f in self.files if f.status == PENDING]
        if pending:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                list(pool.map(self.upload, pending))
        return self.files

    def retry(self, item_id):
        for item in self.files:
            if item.id == item_id and item.status == ERROR:
                return self.upload(item)
        return None

    @property
    def busy(self):
        return any(f.status == UPLOADING for f in self.files)

    @property
    def has_errors(self):
        return any(f.status == ERROR for f in self.files)

    def attachments(self):
        return [f.attachment for f in self.files if f.status == SUCCESS]
