from unittest import mock

import pytest
from eth_account import Account

from zodiac_mint.app import create_app
from zodiac_mint.errors import NotPaymentOwner, StorageUnavailable
from zodiac_mint.linking import GenerationLinker, mark_minted_message, sign_link_message, store_generation_message
from zodiac_mint.models import CollectionItem, PaymentRecord
from zodiac_mint.verification import ExpiringCache, VerificationService

from conftest import CELO, NFT, OTHER_USER, OTHER_USER_KEY, PAYMENT, USER, USER_KEY

SIGNATURE = '0x' + 'aa' * 65


@pytest.fixture
def services():
    return {
        'storage': mock.Mock(gateways=['https://gw1.test/ipfs/']),
        'fortune': mock.Mock(),
        'payments': mock.Mock(),
        'linker': mock.Mock(),
        'collection': mock.Mock(),
        'verification': VerificationService(ExpiringCache(ttl=3600)),
    }


@pytest.fixture
def client(config, services):
    app = create_app(config, **services)
    return app.test_client()


def test_health(client):
    response = client.get('/health')

    assert response.status_code == 200
    assert response.get_json() == {'status': 'ok', 'chainId': 44787}


def test_store_generation(client, services):
    services['linker'].store_generation.return_value = {
        'success': True, 'transactionHash': '0x01', 'alreadyLinked': False,
    }

    response = client.post('/api/store-generation', json={
        'paymentId': 42, 'metadataURI': 'ipfs://bafydoc', 'userAddress': USER, 'signature': SIGNATURE,
    })

    assert response.status_code == 200
    assert response.get_json()['transactionHash'] == '0x01'
    services['linker'].store_generation.assert_called_once_with(42, 'ipfs://bafydoc', USER, SIGNATURE)


@pytest.mark.parametrize('payload', [
    {'metadataURI': 'ipfs://bafydoc', 'userAddress': USER, 'signature': SIGNATURE},
    {'paymentId': 42, 'metadataURI': 'https://not-ipfs', 'userAddress': USER, 'signature': SIGNATURE},
    {'paymentId': 42, 'metadataURI': 'ipfs://bafydoc', 'userAddress': 'not-an-address', 'signature': SIGNATURE},
    {'paymentId': 42, 'metadataURI': 'ipfs://bafydoc', 'userAddress': USER},
])
def test_store_generation_validation(client, services, payload):
    response = client.post('/api/store-generation', json=payload)

    assert response.status_code == 400
    services['linker'].store_generation.assert_not_called()


def test_store_generation_wrong_owner(client, services):
    services['linker'].store_generation.side_effect = NotPaymentOwner(stage='link')

    response = client.post('/api/store-generation', json={
        'paymentId': 42, 'metadataURI': 'ipfs://bafydoc', 'userAddress': USER, 'signature': SIGNATURE,
    })

    assert response.status_code == 403
    assert response.get_json()['kind'] == 'not_payment_owner'


def test_store_generation_without_backend_key(config, services):
    services['linker'] = None
    client = create_app(config, **services).test_client()

    response = client.post('/api/store-generation', json={
        'paymentId': 42, 'metadataURI': 'ipfs://bafydoc', 'userAddress': USER, 'signature': SIGNATURE,
    })

    assert response.status_code == 500
    assert response.get_json() == {'error': 'Server configuration error'}


def test_mark_minted(client, services):
    services['linker'].mark_minted.return_value = {'success': True, 'transactionHash': '0x02'}

    response = client.post('/api/mark-minted', json={'paymentId': 42, 'tokenId': 7, 'userAddress': USER,
                                                       'signature': SIGNATURE})

    assert response.status_code == 200
    services['linker'].mark_minted.assert_called_once_with(42, 7, USER, SIGNATURE)


@pytest.fixture
def backend_client(config, services, backend_rpc):
    services['linker'] = GenerationLinker(backend_rpc, PAYMENT, NFT)
    return create_app(config, **services).test_client()


def test_store_generation_signed_by_payer(backend_client, backend_rpc):
    signature = sign_link_message(Account.from_key(USER_KEY), store_generation_message(42, 'ipfs://bafydoc'))

    response = backend_client.post('/api/store-generation', json={
        'paymentId': 42, 'metadataURI': 'ipfs://bafydoc', 'userAddress': USER, 'signature': signature,
    })

    assert response.status_code == 200
    assert list(backend_rpc.written('storeGeneration')[0].args) == [42, 'ipfs://bafydoc']


def test_store_generation_for_someone_elses_payment(backend_client, backend_rpc):
    intruder = Account.from_key(OTHER_USER_KEY)
    signature = sign_link_message(intruder, store_generation_message(42, 'ipfs://bafydoc'))

    response = backend_client.post('/api/store-generation', json={
        'paymentId': 42, 'metadataURI': 'ipfs://bafydoc', 'userAddress': USER, 'signature': signature,
    })

    assert response.status_code == 403
    assert backend_rpc.written('storeGeneration') == []


def test_mark_minted_for_someone_elses_payment(backend_client, backend_rpc):
    intruder = Account.from_key(OTHER_USER_KEY)

    response = backend_client.post('/api/mark-minted', json={
        'paymentId': 42, 'tokenId': 999, 'userAddress': USER,
        'signature': sign_link_message(intruder, mark_minted_message(42, 999)),
    })

    assert response.status_code == 403
    assert response.get_json()['kind'] == 'not_payment_owner'
    assert backend_rpc.written('markAsMinted') == []


def test_mark_minted_with_token_the_payer_does_not_own(backend_client, backend_rpc):
    backend_rpc.set_read(NFT, 'ownerOf', [8], OTHER_USER)

    response = backend_client.post('/api/mark-minted', json={
        'paymentId': 42, 'tokenId': 8, 'userAddress': USER,
        'signature': sign_link_message(Account.from_key(USER_KEY), mark_minted_message(42, 8)),
    })

    assert response.status_code == 403
    assert backend_rpc.written('markAsMinted') == []


def test_mark_minted_signed_by_payer(backend_client, backend_rpc):
    response = backend_client.post('/api/mark-minted', json={
        'paymentId': 42, 'tokenId': 7, 'userAddress': USER,
        'signature': sign_link_message(Account.from_key(USER_KEY), mark_minted_message(42, 7)),
    })

    assert response.status_code == 200
    assert list(backend_rpc.written('markAsMinted')[0].args) == [42, 7]


def test_verify_self_round_trip(client):
    assert client.post('/api/verify-self/check', json={'userId': 'Alice'}).get_json() == {'verified': False}

    response = client.post('/api/verify-self/callback', json={'userId': 'ALICE', 'date_of_birth': '1990-08-15'})
    assert response.status_code == 200

    result = client.post('/api/verify-self/check', json={'userId': 'alice'}).get_json()
    assert result == {'verified': True, 'date_of_birth': '1990-08-15'}


def test_verify_self_check_requires_user(client):
    assert client.post('/api/verify-self/check', json={}).status_code == 400


def test_fetch_nft_metadata(client, services):
    services['storage'].fetch_json_with_gateway.return_value = ({'name': 'card'}, 'https://gw1.test/ipfs/bafy')

    response = client.post('/api/fetch-nft-metadata', json={'tokenURI': 'ipfs://bafy'})

    assert response.get_json() == {'success': True, 'metadata': {'name': 'card'},
                                   'gateway': 'https://gw1.test/ipfs/bafy'}


def test_fetch_nft_metadata_all_gateways_down(client, services):
    services['storage'].fetch_json_with_gateway.side_effect = StorageUnavailable(
        stage='storage', cause=['https://gw1.test/ipfs/bafy - HTTP 504'])

    response = client.post('/api/fetch-nft-metadata', json={'tokenURI': 'ipfs://bafy'})

    assert response.status_code == 503
    assert response.get_json()['errors'] == ['https://gw1.test/ipfs/bafy - HTTP 504']


def test_generate_fortune(client, services):
    services['fortune'].generate.return_value = 'Stars align.'

    response = client.post('/api/generate-fortune', json={'username': 'alice', 'sign': 'Leo',
                                                          'zodiacType': 'western'})

    assert response.get_json() == {'fortune': 'Stars align.'}
    services['fortune'].generate.assert_called_once_with('alice', 'western', 'Leo')


def test_payment_verify(client, services):
    services['payments'].verify.return_value = PaymentRecord(42, USER, 2 * CELO, 1700000000)

    response = client.post('/api/payment/verify', json={'txHash': '0x' + 'ab' * 32, 'userAddress': USER})

    body = response.get_json()
    assert body['paymentId'] == 42
    assert body['amount'] == str(2 * CELO)
    assert body['amountFormatted'] == '2 CELO'


def test_payment_verify_not_found(client, services):
    services['payments'].verify.return_value = None

    response = client.post('/api/payment/verify', json={'txHash': '0x' + 'ab' * 32, 'userAddress': USER})

    assert response.status_code == 404


def test_get_payment(client, services):
    services['payments'].get_payment.return_value = PaymentRecord(42, USER, 2 * CELO, 1700000000)

    response = client.get('/api/payment/verify?paymentId=42')

    assert response.get_json()['user'] == USER
    assert client.get('/api/payment/verify').status_code == 400


def test_collection(client, services):
    services['collection'].collect.return_value = [
        CollectionItem('minted', 'current', NFT, 1600, token_id=11, token_uri='ipfs://m11', payment_id=2),
    ]

    response = client.get(f'/api/collection/{USER.lower()}')

    assert response.status_code == 200
    assert response.get_json()['items'][0]['tokenId'] == 11
    services['collection'].collect.assert_called_once_with(USER)


def test_collection_invalid_address(client):
    assert client.get('/api/collection/nope').status_code == 400
