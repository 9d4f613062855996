from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class PaymentRecord:
    payment_id: int
    user: str
    amount: int
    timestamp: int

    @classmethod
    def from_call(cls, payment_id, result):
        user, amount, timestamp = result[:3]
        return cls(payment_id, user, int(amount), int(timestamp))


@dataclass(frozen=True)
class GenerationRecord:
    payment_id: int
    metadata_uri: str
    token_id: int
    is_minted: bool
    created_at: int
    minted_at: int

    @classmethod
    def from_call(cls, payment_id, result):
        metadata_uri, token_id, is_minted, created_at, minted_at = result
        return cls(payment_id, metadata_uri, int(token_id), bool(is_minted),
                   int(created_at), int(minted_at))

    @property
    def is_linked(self):
        return bool(self.metadata_uri)


@dataclass(frozen=True)
class CollectionItem:
    kind: str  # 'minted' or 'pending'
    version: str
    contract_address: str
    timestamp: int
    token_id: Optional[int] = None
    token_uri: Optional[str] = None
    payment_id: Optional[int] = None
    metadata_uri: Optional[str] = None

    def to_dict(self):
        return {
            'kind': self.kind,
            'version': self.version,
            'contractAddress': self.contract_address,
            'timestamp': self.timestamp,
            'tokenId': self.token_id,
            'tokenURI': self.token_uri,
            'paymentId': self.payment_id,
            'metadataURI': self.metadata_uri,
        }
