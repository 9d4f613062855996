import itertools
from unittest import mock

import pytest
import requests
from eth_abi import encode
from hexbytes import HexBytes
from web3 import Web3

from zodiac_mint.config import TestingConfig
from zodiac_mint.errors import ContractReverted
from zodiac_mint.rpc import Receipt
from zodiac_mint.state import PipelineRun, PipelineState, ZodiacRequest

USER = '0x70997970C51812dc3A010C7d01b50e0d17dc79C8'
OTHER_USER = '0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC'
BACKEND = '0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266'

# well-known local development keys for the addresses above
USER_KEY = '0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d'
OTHER_USER_KEY = '0x5de4111afa1a4b94908f83103eb1f1706367c2e68ca870fc3fb9a804cdab365a'
ZERO = '0x0000000000000000000000000000000000000000'

PAYMENT = TestingConfig.PAYMENT_CONTRACT_ADDRESS
LEGACY_PAYMENT = TestingConfig.LEGACY_PAYMENT_CONTRACT_ADDRESS
NFT = TestingConfig.NFT_CONTRACT_ADDRESS
LEGACY_NFT = TestingConfig.LEGACY_NFT_CONTRACT_ADDRESS

CELO = 10 ** 18

PAYMENT_SIGNATURE = 'ImagePaymentReceived(address,uint256,uint256,uint256)'
NFT_MINTED_SIGNATURE = 'NFTMinted(address,uint256,string)'
TRANSFER_SIGNATURE = 'Transfer(address,address,uint256)'


def make_log(address, topics, data=b'', log_index=0):
    return {
        'address': address,
        'topics': [HexBytes(t) for t in topics],
        'data': HexBytes(data),
        'logIndex': log_index,
        'transactionIndex': 0,
        'transactionHash': HexBytes('0x' + '12' * 32),
        'blockHash': HexBytes('0x' + '34' * 32),
        'blockNumber': 100,
    }


def topic_address(address):
    return encode(['address'], [address])


def topic_uint(value):
    return encode(['uint256'], [value])


def payment_log(payment_id, user=USER, amount=2 * CELO, timestamp=1700000000, address=PAYMENT,
                signature=PAYMENT_SIGNATURE):
    return make_log(
        address,
        [Web3.keccak(text=signature), topic_address(user), topic_uint(payment_id)],
        encode(['uint256', 'uint256'], [amount, timestamp]),
    )


def minted_log(token_id, to=USER, token_uri='ipfs://meta', address=NFT):
    return make_log(
        address,
        [Web3.keccak(text=NFT_MINTED_SIGNATURE), topic_address(to), topic_uint(token_id)],
        encode(['string'], [token_uri]),
        log_index=1,
    )


def transfer_log(token_id, sender=ZERO, to=USER, address=NFT):
    return make_log(
        address,
        [Web3.keccak(text=TRANSFER_SIGNATURE), topic_address(sender), topic_address(to), topic_uint(token_id)],
    )


def receipt(logs, tx_hash='0x' + 'ab' * 32):
    return Receipt(tx_hash=tx_hash, status=1, block_number=100, logs=logs)


def generation(metadata_uri='', token_id=0, is_minted=False, created_at=1700000000, minted_at=0):
    return (metadata_uri, token_id, is_minted, created_at, minted_at)


class FakeRpc:
    """In-memory stand-in for ``RpcClient`` with real web3 contract objects."""

    def __init__(self, address=USER, balance=100 * CELO):
        self.web3 = Web3()
        self.address = address
        self.reads = {}
        self._hashes = ('0x' + f'{n:064x}' for n in itertools.count(1))
        self.read_contract = mock.Mock(side_effect=self._read)
        self.write_contract = mock.Mock(side_effect=lambda call: next(self._hashes))
        self.wait_for_transaction = mock.Mock(return_value=receipt([]))
        self.find_transaction = mock.Mock(side_effect=lambda tx_hash: self.wait_for_transaction(tx_hash))
        self.get_balance = mock.Mock(return_value=balance)

    def contract(self, address, abi):
        return self.web3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    def set_read(self, address, function, args, value):
        self.reads[(address.lower(), function, tuple(args))] = value

    def _read(self, address, abi, function, args=()):
        key = (address.lower(), function, tuple(args))
        if key not in self.reads:
            raise ContractReverted(f'Contract execution failed: {function}{tuple(args)}')
        value = self.reads[key]
        if isinstance(value, Exception):
            raise value
        return value

    def written(self, function):
        return [c.args[0] for c in self.write_contract.call_args_list if c.args[0].function == function]


def json_response(body, status=200):
    response = mock.Mock()
    response.status_code = status
    response.ok = 200 <= status < 400
    response.json.return_value = body
    response.text = str(body)
    response.reason = 'OK' if response.ok else 'Error'
    if response.ok:
        response.raise_for_status.return_value = None
    else:
        response.raise_for_status.side_effect = requests.HTTPError(response=response)
    return response


@pytest.fixture
def config():
    return TestingConfig()


@pytest.fixture
def rpc():
    return FakeRpc()


@pytest.fixture
def request_data():
    return ZodiacRequest(username='alice', zodiac_type='western', sign='Leo')


@pytest.fixture
def paid_run(request_data):
    return PipelineRun(request=request_data, state=PipelineState.PAID, payment_id=42,
                       payment_tx_hash='0x' + 'ab' * 32, payment_amount=2 * CELO)


@pytest.fixture
def image_run(paid_run):
    return (paid_run
            .advance(PipelineState.TEXT_DONE, fortune='The stars favour your next deploy.')
            .advance(PipelineState.IMAGE_DONE, image_url='https://cdn.example.com/leo.png'))


@pytest.fixture
def linked_run(image_run):
    return image_run.advance(PipelineState.LINKED, metadata_uri='ipfs://generation-doc',
                             link_tx_hash='0x' + 'cd' * 32)


@pytest.fixture
def backend_rpc():
    rpc = FakeRpc(address=BACKEND)
    rpc.set_read(PAYMENT, 'getPayment', [42], (USER, 2 * CELO, 1700000000))
    rpc.set_read(PAYMENT, 'getGeneration', [42], generation())
    rpc.set_read(NFT, 'ownerOf', [7], USER)
    return rpc
