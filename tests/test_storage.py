import base64
import io
from unittest import mock

import pytest
import requests
from PIL import Image

from zodiac_mint.errors import StorageUnavailable, StorageUploadFailed
from zodiac_mint.storage import DurableImageStore, PinataStorage, ipfs_path

from conftest import json_response

GATEWAYS = ['https://gw1.test/ipfs/', 'https://gw2.test/ipfs/']


def png_data_url():
    buffer = io.BytesIO()
    Image.new('RGB', (4, 4), color='purple').save(buffer, format='PNG')
    return 'data:image/png;base64,' + base64.b64encode(buffer.getvalue()).decode()


@pytest.fixture
def session():
    return mock.Mock()


@pytest.fixture
def storage(session):
    return PinataStorage('jwt-token', GATEWAYS, session=session)


def test_upload_json(storage, session):
    session.post.return_value = json_response({'IpfsHash': 'bafydoc'})

    result = storage.upload_json({'fortuneText': 'hi'}, 'western_Leo_fortune')

    assert result.ipfs_url == 'ipfs://bafydoc'
    assert result.gateway_url == 'https://gw1.test/ipfs/bafydoc'
    assert session.post.call_args.args[0] == 'https://api.pinata.cloud/pinning/pinJSONToIPFS'
    payload = session.post.call_args.kwargs['json']
    assert payload['pinataContent'] == {'fortuneText': 'hi'}
    assert payload['pinataMetadata'] == {'name': 'western_Leo_fortune'}
    assert session.post.call_args.kwargs['headers'] == {'Authorization': 'Bearer jwt-token'}


def test_upload_json_error_response(storage, session):
    session.post.return_value = json_response({'error': 'quota'}, status=403)

    with pytest.raises(StorageUploadFailed):
        storage.upload_json({}, 'doc')


def test_upload_requires_jwt(session):
    with pytest.raises(StorageUploadFailed):
        PinataStorage(None, GATEWAYS, session=session).upload_json({}, 'doc')
    session.post.assert_not_called()


def test_upload_image_from_data_url(storage, session):
    session.post.return_value = json_response({'IpfsHash': 'bafyimg'})

    result = storage.upload_image(png_data_url(), 'leo.png')

    assert result.ipfs_url == 'ipfs://bafyimg'
    name, data, mime = session.post.call_args.kwargs['files']['file']
    assert name == 'leo.png'
    assert mime == 'image/png'
    assert data.startswith(b'\x89PNG')


def test_upload_image_downloads_http_source(storage, session):
    buffer = io.BytesIO()
    Image.new('RGB', (2, 2)).save(buffer, format='JPEG')
    download = mock.Mock(ok=True, content=buffer.getvalue())
    session.get.return_value = download
    session.post.return_value = json_response({'IpfsHash': 'bafyjpg'})

    storage.upload_image('https://s3.test/leo.jpg', 'leo.jpg')

    assert session.post.call_args.kwargs['files']['file'][2] == 'image/jpeg'


def test_upload_image_rejects_invalid_bytes(storage, session):
    source = 'data:image/png;base64,' + base64.b64encode(b'not an image').decode()

    with pytest.raises(StorageUploadFailed):
        storage.upload_image(source, 'bad.png')
    session.post.assert_not_called()


def test_fetch_json_falls_back_to_next_gateway(storage, session):
    session.get.side_effect = [requests.Timeout('slow'), json_response({'imageUrl': 'https://s3.test/x.png'})]

    document, url = storage.fetch_json_with_gateway('ipfs://bafydoc')

    assert document == {'imageUrl': 'https://s3.test/x.png'}
    assert url == 'https://gw2.test/ipfs/bafydoc'
    assert session.get.call_args_list[0].kwargs['timeout'] == 10


def test_fetch_json_all_gateways_fail(storage, session):
    session.get.side_effect = [requests.ConnectionError('refused'), json_response({}, status=504)]

    with pytest.raises(StorageUnavailable) as excinfo:
        storage.fetch_json('ipfs://bafydoc')

    assert len(excinfo.value.cause) == 2


@pytest.mark.parametrize('uri, path', [
    ('ipfs://bafydoc', 'bafydoc'),
    ('ipfs://ipfs/bafydoc', 'bafydoc'),
    ('https://gateway.pinata.cloud/ipfs/bafydoc/meta.json', 'bafydoc/meta.json'),
    ('https://example.com/meta.json', None),
])
def test_ipfs_path(uri, path):
    assert ipfs_path(uri) == path


def test_durable_store_returns_permanent_url(session):
    session.post.return_value = json_response({'s3Url': 'https://s3.test/leo.png'})

    url = DurableImageStore('https://upload.test', session=session).persist(
        'https://provider.test/tmp.png', 'alice', 'Leo', 'western')

    assert url == 'https://s3.test/leo.png'
    assert session.post.call_args.kwargs['json'] == {
        'imageUrl': 'https://provider.test/tmp.png', 'username': 'alice', 'sign': 'Leo', 'zodiacType': 'western',
    }


def test_durable_store_failure_returns_none(session):
    session.post.return_value = json_response({'error': 'denied'}, status=500)

    assert DurableImageStore('https://upload.test', session=session).persist('u', 'a', 'Leo', 'western') is None
