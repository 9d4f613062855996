import datetime
import logging
import time
from dataclasses import replace

import requests
from eth_account import Account
from eth_account.messages import encode_defunct

from .abis import IMAGE_PAYMENT_ABI, ZODIAC_NFT_ABI
from .config import format_celo
from .errors import (
    ERROR_CLASSES,
    AlreadyMinted,
    ContractReverted,
    ErrorKind,
    InvalidState,
    NotPaymentOwner,
    PipelineError,
    TransientRpcError,
)
from .models import GenerationRecord, PaymentRecord
from .rpc import ContractCall, to_hex
from .state import PipelineState
from .themes import REGULAR, get_theme

logger = logging.getLogger(__name__)


def build_generation_document(run, description=''):
    req = run.request
    theme = get_theme(req.theme) or get_theme(REGULAR)
    return {
        'fortuneText': run.fortune,
        'imageUrl': run.image_url,
        'zodiacType': req.zodiac_type,
        'zodiacSign': req.sign,
        'paymentTxHash': run.payment_tx_hash,
        'paymentAmount': format_celo(run.payment_amount or 0),
        'username': req.username or '',
        'description': description,
        'theme': theme.id,
        'themeInfo': theme.info(),
        'generatedAt': datetime.datetime.now(datetime.timezone.utc).isoformat(),
    }


def store_generation_message(payment_id, metadata_uri):
    return f'Link Zodiac Card generation\nPayment ID: {payment_id}\nMetadata: {metadata_uri}'


def mark_minted_message(payment_id, token_id):
    return f'Mark Zodiac Card as minted\nPayment ID: {payment_id}\nToken ID: {token_id}'


def sign_link_message(account, message):
    """Sign ``message`` as an EIP-191 personal message; returns 0x hex."""
    signed = account.sign_message(encode_defunct(text=message))
    return to_hex(signed.signature)


def recover_signer(message, signature):
    try:
        return Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as exc:
        raise NotPaymentOwner('Invalid signature', stage='link', cause=exc) from exc


class GenerationLinker:
    """Backend-side writer for ``storeGeneration`` and ``markAsMinted``.

    Runs with the backend signing key. Every write first recovers the
    caller from a signed message and checks that it is the payer recorded
    on-chain.
    """

    def __init__(self, rpc, payment_address, nft_address=None, abi=IMAGE_PAYMENT_ABI,
                 nft_abi=ZODIAC_NFT_ABI):
        self.rpc = rpc
        self.payment_address = payment_address
        self.nft_address = nft_address
        self.abi = abi
        self.nft_abi = nft_abi

    def _read(self, function, payment_id):
        return self.rpc.read_contract(self.payment_address, self.abi, function, [payment_id])

    def verify_owner(self, payment_id, user_address, message, signature, stage='link'):
        signer = recover_signer(message, signature)
        if signer.lower() != user_address.lower():
            logger.warning(f'[{stage}] Signature for payment {payment_id} was made by {signer}, not {user_address}')
            raise NotPaymentOwner('Signature does not match user address', stage=stage)

        payment = PaymentRecord.from_call(payment_id, self._read('getPayment', payment_id))
        if payment.user.lower() != user_address.lower():
            logger.warning(f'[{stage}] {user_address} is not the payer of payment {payment_id}')
            raise NotPaymentOwner(stage=stage)
        return payment

    def verify_token_owner(self, token_id, payment):
        if not self.nft_address:
            raise InvalidState('NFT contract not configured', stage='mark-minted')
        try:
            owner = self.rpc.read_contract(self.nft_address, self.nft_abi, 'ownerOf', [token_id])
        except ContractReverted as exc:
            raise InvalidState(f'Token {token_id} does not exist', stage='mark-minted', cause=exc) from exc
        if str(owner).lower() != payment.user.lower():
            raise NotPaymentOwner(f'Token {token_id} is not owned by the payer', stage='mark-minted')

    def get_generation(self, payment_id):
        return GenerationRecord.from_call(payment_id, self._read('getGeneration', payment_id))

    def _send(self, function, args):
        tx_hash = self.rpc.write_contract(ContractCall(
            address=self.payment_address, abi=self.abi, function=function, args=args))
        self.rpc.wait_for_transaction(tx_hash)
        return tx_hash

    def store_generation(self, payment_id, metadata_uri, user_address, signature):
        self.verify_owner(payment_id, user_address,
                          store_generation_message(payment_id, metadata_uri), signature)

        generation = self.get_generation(payment_id)
        if generation.is_linked:
            if generation.metadata_uri == metadata_uri:
                logger.info(f'[Store Generation] Payment {payment_id} already linked to {metadata_uri}')
                return {'success': True, 'transactionHash': None, 'alreadyLinked': True}
            raise InvalidState('Metadata is already linked to this payment', stage='link')

        logger.info(f'[Store Generation] Calling contract from: {self.rpc.address}')
        tx_hash = self._send('storeGeneration', [payment_id, metadata_uri])
        return {'success': True, 'transactionHash': tx_hash, 'alreadyLinked': False}

    def mark_minted(self, payment_id, token_id, user_address, signature):
        payment = self.verify_owner(payment_id, user_address,
                                    mark_minted_message(payment_id, token_id), signature, stage='mark-minted')

        if self.get_generation(payment_id).is_minted:
            raise AlreadyMinted(stage='mark-minted')
        self.verify_token_owner(token_id, payment)

        tx_hash = self._send('markAsMinted', [payment_id, token_id])
        logger.info(f'[Mark Minted] Payment {payment_id} linked to token {token_id}: {tx_hash}')
        return {'success': True, 'transactionHash': tx_hash}


class HttpLinkClient:
    """Client-side adapter for the backend link routes.

    Requests are signed with ``account`` so the backend can check that the
    caller controls ``userAddress``.
    """

    def __init__(self, base_url, account, timeout=60, session=None):
        self.base_url = base_url.rstrip('/')
        self.account = account
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, path, payload, stage):
        try:
            response = self.session.post(f'{self.base_url}{path}', json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise TransientRpcError(f'Backend unreachable: {exc}', stage=stage, cause=exc) from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.ok:
            return body

        try:
            kind = ErrorKind(body.get('kind'))
        except ValueError:
            kind = ErrorKind.CONTRACT_REVERTED
        cls = ERROR_CLASSES.get(kind, PipelineError)
        raise cls(body.get('error') or body.get('details'), stage=stage, kind=kind)

    def store_generation(self, payment_id, metadata_uri, user_address):
        signature = sign_link_message(self.account, store_generation_message(payment_id, metadata_uri))
        return self._post('/api/store-generation', {
            'paymentId': payment_id, 'metadataURI': metadata_uri, 'userAddress': user_address,
            'signature': signature,
        }, stage='link')

    def mark_minted(self, payment_id, token_id, user_address):
        signature = sign_link_message(self.account, mark_minted_message(payment_id, token_id))
        return self._post('/api/mark-minted', {
            'paymentId': payment_id, 'tokenId': token_id, 'userAddress': user_address,
            'signature': signature,
        }, stage='mark-minted')


class MetadataLinkingStage:
    """Uploads the generation document and links it to the payment record."""

    def __init__(self, storage, linker, user_address):
        self.storage = storage
        self.linker = linker
        self.user_address = user_address

    def link(self, run):
        if run.failed or run.reached(PipelineState.LINKED):
            return run
        if not run.reached(PipelineState.IMAGE_DONE):
            return run.fail(InvalidState('Fortune and image must be generated before linking', stage='link'))

        try:
            # One upload per run; a retried link reuses the same content address
            if not run.metadata_uri:
                req = run.request
                name = f'{req.zodiac_type}_{req.sign}_fortune_{int(time.time() * 1000)}'
                result = self.storage.upload_json(build_generation_document(run), name)
                run = replace(run, metadata_uri=result.ipfs_url)

            outcome = self.linker.store_generation(run.payment_id, run.metadata_uri, self.user_address)
        except PipelineError as exc:
            exc.stage = exc.stage or 'link'
            logger.error(f'[Link] Failed to link metadata for payment {run.payment_id}: {exc.message}')
            return run.fail(exc)

        return run.advance(PipelineState.LINKED, link_tx_hash=outcome.get('transactionHash'))
