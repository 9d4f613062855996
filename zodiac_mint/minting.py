import logging
import time
from dataclasses import replace

import requests

from .abis import ZODIAC_NFT_ABI
from .config import format_celo
from .errors import (
    AlreadyMinted,
    ContractReverted,
    InsufficientFunds,
    InvalidState,
    NoMintEvent,
    PipelineError,
    StorageUnavailable,
)
from .events import decode_minted_token_id
from .rpc import ContractCall
from .state import PipelineState
from .storage import ipfs_path, is_ipfs_uri
from .themes import REGULAR

logger = logging.getLogger(__name__)

COLLECTION_NAME = 'Zodiac Card'
PUBLIC_GATEWAY = 'https://ipfs.io/ipfs/'


def build_nft_metadata(run, image_ipfs_url, site_url=None):
    req = run.request
    return {
        'name': f'Zodiac Card Fortune #{int(time.time() * 1000)}',
        'description': f'A unique Zodiac fortune for {req.username}. {run.fortune or ""}'.strip(),
        'image': f'{PUBLIC_GATEWAY}{ipfs_path(image_ipfs_url)}',
        'external_url': site_url,
        'attributes': [
            {'trait_type': 'Zodiac Card', 'value': req.zodiac_type},
            {'trait_type': 'Zodiac Sign', 'value': req.sign},
            {'trait_type': 'Username', 'value': req.username},
            {'trait_type': 'Collection', 'value': COLLECTION_NAME},
            {'trait_type': 'Theme', 'value': req.theme or REGULAR},
        ],
    }


class ReferralTracker:
    """Referral tag appended to mint call data, reported after confirmation."""

    def __init__(self, data_suffix='', submit_url='', chain_id=None, timeout=10, session=None):
        self.data_suffix = data_suffix or ''
        self.submit_url = submit_url
        self.chain_id = chain_id
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config, session=None):
        return cls(config.REFERRAL_DATA_SUFFIX, config.REFERRAL_SUBMIT_URL,
                   chain_id=config.CHAIN_ID, session=session)

    @property
    def enabled(self):
        return bool(self.data_suffix)

    @property
    def suffix(self):
        tag = self.data_suffix[2:] if self.data_suffix.startswith('0x') else self.data_suffix
        return bytes.fromhex(tag)

    def submit(self, tx_hash):
        """Report ``tx_hash`` to the referral service; failures are only logged."""
        if not (self.enabled and self.submit_url):
            return False
        try:
            response = self.session.post(self.submit_url,
                                         json={'txHash': tx_hash, 'chainId': self.chain_id},
                                         timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning(f'Error submitting referral for {tx_hash}: {exc}')
            return False
        logger.info(f'Submitted referral for {tx_hash} on chain {self.chain_id}')
        return True


class MintStage:
    """Uploads NFT metadata, mints, and cross-links the token to the payment."""

    def __init__(self, rpc, nft_address, storage, payments, link_client, fee_wei,
                 referral=None, site_url=None, abi=ZODIAC_NFT_ABI):
        self.rpc = rpc
        self.nft_address = nft_address
        self.storage = storage
        self.payments = payments
        self.link_client = link_client
        self.fee_wei = fee_wei
        self.referral = referral
        self.site_url = site_url
        self.abi = abi

    @property
    def contract(self):
        return self.rpc.contract(self.nft_address, self.abi)

    def mint_fee(self):
        """The larger of the configured fee and the contract's ``mintFee``."""
        try:
            onchain = self.rpc.read_contract(self.nft_address, self.abi, 'mintFee')
        except PipelineError as exc:
            logger.warning(f'Could not read mintFee, using configured fee: {exc.message}')
            return self.fee_wei
        return max(self.fee_wei, int(onchain))

    def _canonical_image(self, run, metadata_uri):
        if not metadata_uri:
            return run.image_url
        try:
            document = self.storage.fetch_json(metadata_uri)
        except StorageUnavailable:
            logger.warning(f'[Mint] Could not load {metadata_uri}, using provisional image URL')
            return run.image_url
        return document.get('imageUrl') or run.image_url

    def _token_uri(self, run, metadata_uri):
        image_url = self._canonical_image(run, metadata_uri)
        if not image_url:
            raise InvalidState('No image available to mint', stage='mint')

        name = f'{run.request.zodiac_type}_{run.request.sign}_{int(time.time() * 1000)}'
        if is_ipfs_uri(image_url):
            image_ipfs = image_url
        else:
            image_ipfs = self.storage.upload_image(image_url, f'{name}.png').ipfs_url

        metadata = build_nft_metadata(run, image_ipfs, self.site_url)
        return self.storage.upload_json(metadata, f'{name}_metadata').ipfs_url

    def _check_balance(self, fee):
        balance = self.rpc.get_balance(self.rpc.address)
        if balance < fee:
            raise InsufficientFunds(
                f'Insufficient CELO balance. You need {format_celo(fee)} to mint.', stage='mint')

    def _mark_minted(self, run, token_id):
        try:
            self.link_client.mark_minted(run.payment_id, token_id, self.rpc.address)
        except AlreadyMinted:
            logger.info(f'[Mint] Payment {run.payment_id} is already marked as minted')
        except PipelineError as exc:
            logger.error(f'[Mint] Token {token_id} minted but markAsMinted failed for payment '
                         f'{run.payment_id}: {exc.message}')
            return False
        return True

    def _prepare(self, run):
        generation = self.payments.get_generation(run.payment_id)
        if generation.is_minted:
            raise AlreadyMinted(stage='mint')

        # Retries reuse the already uploaded token metadata
        if not run.token_uri:
            token_uri = self._token_uri(run, generation.metadata_uri or run.metadata_uri)
            run = replace(run, token_uri=token_uri)
        return run

    def _submit(self, run):
        fee = self.mint_fee()
        self._check_balance(fee)

        suffix = self.referral.suffix if self.referral and self.referral.enabled else b''
        return self.rpc.write_contract(ContractCall(
            address=self.nft_address,
            abi=self.abi,
            function='mint',
            args=[self.rpc.address, run.token_uri],
            value=fee,
            data_suffix=suffix,
        ))

    def mint(self, run):
        """Mint the linked generation in ``run`` exactly once.

        An earlier ``mint_tx_hash`` is always confirmed and decoded before a
        new mint is considered, so a timed-out confirmation never leads to
        a second token for the same payment.
        """
        if run.failed or run.reached(PipelineState.MINTED):
            return run
        if not run.reached(PipelineState.LINKED):
            return run.fail(InvalidState('Generation must be linked before minting', stage='mint'))

        tx_hash = run.mint_tx_hash
        try:
            receipt = None
            if tx_hash:
                logger.info(f'[Mint] Reconciling earlier mint transaction {tx_hash}')
                receipt = self.rpc.find_transaction(tx_hash)
            if receipt is None:
                tx_hash = None
                run = self._prepare(run)
                tx_hash = self._submit(run)
                receipt = self.rpc.wait_for_transaction(tx_hash)
            token_id = decode_minted_token_id(receipt.logs, self.contract, recipient=self.rpc.address)
        except NoMintEvent as exc:
            logger.error(f'[Mint] Mint transaction {tx_hash} succeeded but no NFTMinted event found')
            return replace(run, mint_tx_hash=tx_hash).fail(exc)
        except ContractReverted as exc:
            exc.stage = exc.stage or 'mint'
            logger.error(f'[Mint] Mint reverted for payment {run.payment_id}: {exc.message}')
            return replace(run, mint_tx_hash=None).fail(exc)
        except PipelineError as exc:
            exc.stage = exc.stage or 'mint'
            tx_hash = tx_hash or exc.tx_hash
            logger.error(f'[Mint] Mint failed for payment {run.payment_id}: {exc.message}')
            return replace(run, mint_tx_hash=tx_hash).fail(exc)

        logger.info(f'[Mint] Minted token {token_id} for payment {run.payment_id}: {tx_hash}')
        linked = self._mark_minted(run, token_id)

        if self.referral:
            self.referral.submit(tx_hash)

        return run.advance(
            PipelineState.MINTED,
            token_id=token_id,
            mint_tx_hash=tx_hash,
            cross_link_pending=not linked,
        )
