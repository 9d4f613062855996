import base64
import io
import logging
import time
from dataclasses import dataclass
from urllib.parse import urlparse

import requests
from PIL import Image, UnidentifiedImageError

from .errors import StorageUnavailable, StorageUploadFailed

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_FORMATS = {'png', 'jpeg', 'jpg', 'webp'}


@dataclass(frozen=True)
class UploadResult:
    ipfs_hash: str
    ipfs_url: str
    gateway_url: str


def ipfs_path(uri):
    """Return the ``<cid>[/path]`` part of an ipfs:// URI or a gateway URL."""
    if uri.startswith('ipfs://'):
        path = uri[len('ipfs://'):]
        return path[len('ipfs/'):] if path.startswith('ipfs/') else path
    if uri.startswith('http'):
        parsed = urlparse(uri)
        if '/ipfs/' in parsed.path:
            return parsed.path.split('/ipfs/', 1)[1]
        return None
    return uri


def is_ipfs_uri(uri):
    return bool(uri) and uri.startswith('ipfs://')


class PinataStorage:
    """Content-addressed storage through Pinata, read back through IPFS gateways."""

    def __init__(self, jwt, gateways, api_url='https://api.pinata.cloud',
                 gateway_timeout=10, upload_timeout=60, session=None):
        self.jwt = jwt
        self.gateways = list(gateways)
        self.api_url = api_url.rstrip('/')
        self.gateway_timeout = gateway_timeout
        self.upload_timeout = upload_timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config, session=None):
        return cls(
            jwt=config.PINATA_JWT,
            gateways=config.ipfs_gateways,
            api_url=config.PINATA_API_URL,
            gateway_timeout=config.GATEWAY_TIMEOUT,
            upload_timeout=config.HTTP_TIMEOUT,
            session=session,
        )

    def _headers(self):
        if not self.jwt:
            raise StorageUploadFailed('IPFS upload service not configured', stage='storage')
        return {'Authorization': f'Bearer {self.jwt}'}

    def _result(self, response):
        if not response.ok:
            logger.error(f'Pinata upload failed: {response.status_code} {response.text}')
            raise StorageUploadFailed(f'Failed to upload to IPFS: {response.text}', stage='storage')
        ipfs_hash = response.json()['IpfsHash']
        return UploadResult(
            ipfs_hash=ipfs_hash,
            ipfs_url=f'ipfs://{ipfs_hash}',
            gateway_url=f'{self.gateways[0]}{ipfs_hash}',
        )

    def upload_json(self, document, name):
        headers = self._headers()
        payload = {
            'pinataContent': document,
            'pinataMetadata': {'name': name},
            'pinataOptions': {'cidVersion': 1},
        }
        try:
            response = self.session.post(
                f'{self.api_url}/pinning/pinJSONToIPFS',
                json=payload,
                headers=headers,
                timeout=self.upload_timeout,
            )
        except requests.RequestException as exc:
            raise StorageUploadFailed(f'Failed to upload metadata to IPFS: {exc}',
                                      stage='storage', cause=exc) from exc

        result = self._result(response)
        logger.info(f'Metadata IPFS Hash: {result.ipfs_hash}')
        return result

    def _read_image(self, source):
        if source.startswith('data:'):
            return base64.b64decode(source.split(',', 1)[1])

        try:
            response = self.session.get(source, timeout=self.upload_timeout)
        except requests.RequestException as exc:
            raise StorageUploadFailed(f'Failed to fetch image: {exc}', stage='storage', cause=exc) from exc
        if not response.ok:
            raise StorageUploadFailed('Failed to fetch image', stage='storage')
        return response.content

    def upload_image(self, source, name):
        """Pin an image given as an http(s) URL or a base64 data URL."""
        image_bytes = self._read_image(source)

        try:
            image = Image.open(io.BytesIO(image_bytes))
            image.load()
        except (UnidentifiedImageError, OSError) as exc:
            raise StorageUploadFailed(f'Invalid image data: {exc}', stage='storage', cause=exc) from exc

        if not image.format or image.format.lower() not in ALLOWED_IMAGE_FORMATS:
            raise StorageUploadFailed(f'Unsupported image format: {image.format}', stage='storage')

        mime = Image.MIME.get(image.format, 'application/octet-stream')
        logger.info(f'Uploading image: format={image.format}, size={image.size}, bytes={len(image_bytes)}')

        headers = self._headers()
        try:
            response = self.session.post(
                f'{self.api_url}/pinning/pinFileToIPFS',
                files={'file': (name, image_bytes, mime)},
                headers=headers,
                timeout=self.upload_timeout,
            )
        except requests.RequestException as exc:
            raise StorageUploadFailed(f'Failed to upload image to IPFS: {exc}',
                                      stage='storage', cause=exc) from exc

        result = self._result(response)
        logger.info(f'Image IPFS Hash: {result.ipfs_hash}')
        return result

    def gateway_urls(self, uri):
        path = ipfs_path(uri)
        if path is None:
            return [uri]
        return [f'{gateway}{path}' for gateway in self.gateways]

    def fetch_json_with_gateway(self, uri):
        """Try each gateway in order; the first one returning JSON wins."""
        errors = []
        for url in self.gateway_urls(uri):
            started = time.monotonic()
            try:
                response = self.session.get(url, timeout=self.gateway_timeout,
                                            headers={'Accept': 'application/json'})
            except requests.RequestException as exc:
                errors.append(f'{url} - {exc}')
                logger.warning(f'Gateway request failed for {url}: {exc}')
                continue

            elapsed = round((time.monotonic() - started) * 1000)
            if not response.ok:
                errors.append(f'{url} - HTTP {response.status_code}')
                logger.warning(f'Gateway {url} responded with {response.status_code} in {elapsed}ms')
                continue

            try:
                document = response.json()
            except ValueError as exc:
                errors.append(f'{url} - invalid JSON: {exc}')
                continue

            logger.info(f'Fetched {uri} from {url} in {elapsed}ms')
            return document, url

        logger.error(f'All gateways failed for {uri}: {errors}')
        raise StorageUnavailable(stage='storage', cause=errors)

    def fetch_json(self, uri):
        document, _ = self.fetch_json_with_gateway(uri)
        return document


class DurableImageStore:
    """Copies a transient provider image URL into permanent object storage."""

    def __init__(self, upload_url, timeout=60, session=None):
        self.upload_url = upload_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def persist(self, image_url, username, sign, zodiac_type):
        """Return the permanent URL, or ``None`` when persistence failed."""
        if not self.upload_url:
            logger.warning('Image upload URL not configured, keeping provider URL')
            return None

        try:
            response = self.session.post(
                self.upload_url,
                json={'imageUrl': image_url, 'username': username,
                      'sign': sign, 'zodiacType': zodiac_type},
                timeout=self.timeout,
            )
            if not response.ok:
                logger.warning(f'Failed to upload to S3 ({response.status_code}), using original URL')
                return None
            return response.json().get('s3Url') or None
        except (requests.RequestException, ValueError) as exc:
            logger.warning(f'Error uploading to S3, using original URL: {exc}')
            return None
