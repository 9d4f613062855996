"""
Rebuilds a user's collection across the current and legacy contract pairs.

Minted tokens come from the transfer-history indexer when it has data for
the address; otherwise every token id below ``nextTokenId`` is checked with
``ownerOf``. Pending items are paid generations that were never minted.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import requests

from .abis import IMAGE_PAYMENT_ABI, LEGACY_IMAGE_PAYMENT_ABI, ZODIAC_NFT_ABI
from .errors import PipelineError
from .events import ZERO_ADDRESS
from .models import CollectionItem, GenerationRecord

logger = logging.getLogger(__name__)

INDEXER_PAGE_SIZE = 100


@dataclass(frozen=True)
class ContractVersion:
    label: str
    payment_address: Optional[str]
    nft_address: Optional[str]
    payment_abi: Sequence[dict] = tuple(IMAGE_PAYMENT_ABI)

    @property
    def has_collection_view(self):
        return any(entry.get('name') == 'getUserCollection' for entry in self.payment_abi)


def versions_from_config(config):
    versions = [
        ContractVersion('current', config.PAYMENT_CONTRACT_ADDRESS, config.NFT_CONTRACT_ADDRESS,
                        tuple(IMAGE_PAYMENT_ABI)),
        ContractVersion('legacy', config.LEGACY_PAYMENT_CONTRACT_ADDRESS, config.LEGACY_NFT_CONTRACT_ADDRESS,
                        tuple(LEGACY_IMAGE_PAYMENT_ABI)),
    ]
    return [v for v in versions if v.payment_address or v.nft_address]


def _same(a, b):
    return str(a).lower() == str(b).lower()


def replay_transfers(transfers, address):
    """Return ``(ownership, mint_times)`` keyed by token id.

    Transfers are applied oldest first: one to ``address`` sets ownership,
    one from it clears ownership.
    """
    ownership = {}
    mint_times = {}
    for tx in sorted(transfers, key=lambda t: int(t.get('timeStamp') or 0)):
        token_id = int(tx['tokenID'])
        if _same(tx.get('from'), ZERO_ADDRESS) and tx.get('timeStamp'):
            mint_times[token_id] = int(tx['timeStamp'])
        if _same(tx.get('to'), address):
            ownership[token_id] = True
        elif _same(tx.get('from'), address):
            ownership[token_id] = False
    return ownership, mint_times


class CollectionReader:

    def __init__(self, rpc, versions, indexer_url=None, timeout=10, session=None):
        self.rpc = rpc
        self.versions = list(versions)
        self.indexer_url = indexer_url
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config, rpc, session=None):
        return cls(rpc, versions_from_config(config), indexer_url=config.INDEXER_API_URL,
                   timeout=config.GATEWAY_TIMEOUT, session=session)

    def generations(self, version, address):
        if not (version.payment_address and version.has_collection_view):
            return []
        try:
            payment_ids, records = self.rpc.read_contract(
                version.payment_address, version.payment_abi, 'getUserCollection', [address])
        except PipelineError as exc:
            logger.warning(f'getUserCollection failed on {version.label} contract: {exc.message}')
            return []
        return [GenerationRecord.from_call(int(pid), record) for pid, record in zip(payment_ids, records)]

    def _indexer_page(self, version, address, page):
        params = {
            'module': 'account',
            'action': 'tokennfttx',
            'contractaddress': version.nft_address,
            'address': address,
            'page': page,
            'offset': INDEXER_PAGE_SIZE,
            'sort': 'asc',
        }
        response = self.session.get(self.indexer_url, params=params, timeout=self.timeout)
        response.raise_for_status()
        result = response.json().get('result')
        return result if isinstance(result, list) else []

    def indexer_transfers(self, version, address):
        """All transfers of ``version``'s NFT involving ``address``.

        Pages are read until a short one comes back. A partial history would
        hide tokens, so any failure discards it and the caller falls back to
        the ``ownerOf`` scan.
        """
        if not self.indexer_url:
            return []
        transfers = []
        page = 1
        try:
            while True:
                batch = self._indexer_page(version, address, page)
                transfers.extend(batch)
                if len(batch) < INDEXER_PAGE_SIZE:
                    break
                page += 1
        except (requests.RequestException, ValueError) as exc:
            logger.warning(f'Transfer history unavailable for {version.nft_address} (page {page}): {exc}')
            return []
        return transfers

    def scan_ownership(self, version, address):
        """Check ``ownerOf`` for every issued token id."""
        try:
            total = int(self.rpc.read_contract(version.nft_address, ZODIAC_NFT_ABI, 'nextTokenId'))
        except PipelineError as exc:
            logger.warning(f'nextTokenId failed on {version.label} contract: {exc.message}')
            return {}

        logger.info(f'Scanning {total} tokens on {version.label} contract for {address}')
        ownership = {}
        for token_id in range(total):
            try:
                owner = self.rpc.read_contract(version.nft_address, ZODIAC_NFT_ABI, 'ownerOf', [token_id])
            except PipelineError:
                # burned or never issued
                continue
            if _same(owner, address):
                ownership[token_id] = True
        return ownership

    def token_uri(self, version, token_id):
        try:
            return self.rpc.read_contract(version.nft_address, ZODIAC_NFT_ABI, 'tokenURI', [token_id])
        except PipelineError as exc:
            logger.warning(f'tokenURI({token_id}) failed on {version.label} contract: {exc.message}')
            return None

    def minted_items(self, version, address, generations):
        if not version.nft_address:
            return []

        transfers = self.indexer_transfers(version, address)
        if transfers:
            ownership, mint_times = replay_transfers(transfers, address)
        else:
            ownership, mint_times = self.scan_ownership(version, address), {}

        minted_at = {g.token_id: g.minted_at for g in generations if g.is_minted}
        payment_for = {g.token_id: g.payment_id for g in generations if g.is_minted}

        items = []
        for token_id, owned in ownership.items():
            if not owned:
                continue
            items.append(CollectionItem(
                kind='minted',
                version=version.label,
                contract_address=version.nft_address,
                timestamp=mint_times.get(token_id) or minted_at.get(token_id) or 0,
                token_id=token_id,
                token_uri=self.token_uri(version, token_id),
                payment_id=payment_for.get(token_id),
            ))
        return items

    def collect(self, address):
        items = []
        seen = set()

        for version in self.versions:
            generations = self.generations(version, address)

            for item in self.minted_items(version, address, generations):
                key = (item.contract_address.lower(), item.token_id)
                if key in seen:
                    continue
                seen.add(key)
                items.append(item)

            for generation in generations:
                if generation.is_minted:
                    continue
                key = (version.payment_address.lower(), 'payment', generation.payment_id)
                if key in seen:
                    continue
                seen.add(key)
                items.append(CollectionItem(
                    kind='pending',
                    version=version.label,
                    contract_address=version.payment_address,
                    timestamp=generation.created_at,
                    payment_id=generation.payment_id,
                    metadata_uri=generation.metadata_uri or None,
                ))

        items.sort(key=lambda item: item.timestamp, reverse=True)
        logger.info(f'Collection for {address}: {len(items)} items')
        return items
