from unittest import mock

import pytest

from zodiac_mint.errors import ExternalServiceUnavailable, InvalidState, StorageUnavailable
from zodiac_mint.generation import GenerationOrchestrator
from zodiac_mint.linking import MetadataLinkingStage
from zodiac_mint.minting import MintStage
from zodiac_mint.payment import PaymentStage
from zodiac_mint.pipeline import FortunePipeline
from zodiac_mint.state import PipelineState
from zodiac_mint.storage import UploadResult

from conftest import CELO, NFT, PAYMENT, USER, generation, minted_log, payment_log, receipt

DOCUMENT = {
    'fortuneText': 'Your smart contracts will compile on the first try.',
    'imageUrl': 'https://s3.test/leo.png',
    'zodiacType': 'western',
    'zodiacSign': 'Leo',
    'paymentTxHash': '0x' + 'ab' * 32,
    'username': 'alice',
    'theme': 'regular',
}


@pytest.fixture
def storage():
    storage = mock.Mock()
    storage.fetch_json.return_value = DOCUMENT
    storage.upload_image.return_value = UploadResult('bafyimg', 'ipfs://bafyimg', '')
    storage.upload_json.side_effect = [
        UploadResult('bafydoc', 'ipfs://bafydoc', ''),
        UploadResult('bafymeta', 'ipfs://bafymeta', ''),
    ]
    return storage


@pytest.fixture
def services():
    fortune = mock.Mock()
    fortune.generate.return_value = 'A bright fortune.'
    image = mock.Mock()
    image.generate.return_value = 'https://provider.test/tmp.png'
    store = mock.Mock()
    store.persist.return_value = 'https://s3.test/leo.png'
    return fortune, image, store


@pytest.fixture
def link_client():
    client = mock.Mock()
    client.store_generation.return_value = {'success': True, 'transactionHash': '0x77'}
    return client


@pytest.fixture
def pipeline(rpc, storage, services, link_client):
    rpc.set_read(PAYMENT, 'getGeneration', [42], generation())
    rpc.set_read(PAYMENT, 'getPayment', [42], (USER, 2 * CELO, 1700000000))
    rpc.set_read(NFT, 'mintFee', [], 2 * CELO)
    rpc.wait_for_transaction.side_effect = [receipt([payment_log(42)]), receipt([minted_log(7)])]

    payment = PaymentStage(rpc, PAYMENT, 2 * CELO)
    return FortunePipeline(
        payment,
        GenerationOrchestrator(*services),
        MetadataLinkingStage(storage, link_client, USER),
        MintStage(rpc, NFT, storage, payment, link_client, 2 * CELO),
        storage,
    )


def test_full_run(pipeline, request_data, link_client, rpc):
    run = pipeline.start(request_data)

    assert run.state is PipelineState.MINTED
    assert run.payment_id == 42
    assert run.metadata_uri == 'ipfs://bafydoc'
    assert run.token_id == 7
    assert [c.function for c in (a.args[0] for a in rpc.write_contract.call_args_list)] == ['payForImage', 'mint']
    link_client.store_generation.assert_called_once_with(42, 'ipfs://bafydoc', USER)
    link_client.mark_minted.assert_called_once_with(42, 7, USER)


def test_run_stops_at_first_failure(pipeline, request_data, services, link_client):
    _, image, _ = services
    image.generate.side_effect = ExternalServiceUnavailable(stage='image')

    run = pipeline.start(request_data)

    assert run.failed
    assert run.resume_state is PipelineState.TEXT_DONE
    link_client.store_generation.assert_not_called()

    image.generate.side_effect = None
    run = pipeline.run(run.resume())

    assert run.state is PipelineState.MINTED


def test_resume_linked_payment_from_chain(pipeline, rpc, storage):
    rpc.set_read(PAYMENT, 'getGeneration', [42], generation('ipfs://bafydoc'))

    run = pipeline.resume(42)

    assert run.state is PipelineState.LINKED
    assert run.request.sign == 'Leo'
    assert run.fortune == DOCUMENT['fortuneText']
    assert run.image_url == DOCUMENT['imageUrl']
    assert run.payment_amount == 2 * CELO
    storage.fetch_json.assert_called_once_with('ipfs://bafydoc')


def test_resume_minted_payment_does_nothing(pipeline, rpc, request_data):
    rpc.set_read(PAYMENT, 'getGeneration', [42], generation('ipfs://bafydoc', 7, True, 1000, 2000))

    run = pipeline.resume(42, request_data)
    assert run.state is PipelineState.MINTED
    assert run.token_id == 7

    assert pipeline.run(run) is run
    rpc.write_contract.assert_not_called()


def test_resume_unlinked_payment_starts_generation(pipeline, request_data):
    run = pipeline.resume(42, request_data)

    assert run.state is PipelineState.PAID
    assert run.fortune is None


def test_resume_without_request_needs_document(pipeline, storage):
    with pytest.raises(InvalidState):
        pipeline.resume(42)

    storage.fetch_json.side_effect = StorageUnavailable()
    pipeline.payment.rpc.set_read(PAYMENT, 'getGeneration', [42], generation('ipfs://bafydoc'))
    with pytest.raises(InvalidState):
        pipeline.resume(42)
