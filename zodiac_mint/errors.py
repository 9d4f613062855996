"""
Error taxonomy for the payment, generation and mint pipeline.

Every failure that leaves a stage is a ``PipelineError`` carrying a closed
``ErrorKind``. Provider exceptions are converted exactly once, in
``classify_rpc_error``; callers branch on ``kind`` and never on message text.
"""
import enum

import requests
from web3.exceptions import (
    ContractLogicError,
    ProviderConnectionError,
    TimeExhausted,
    Web3RPCError,
)


class ErrorKind(enum.Enum):
    TRANSIENT_RPC = 'transient_rpc'
    USER_DECLINED = 'user_declined'
    INSUFFICIENT_FUNDS = 'insufficient_funds'
    NONCE_CONFLICT = 'nonce_conflict'
    GAS_LIMIT = 'gas_limit'
    CONTRACT_REVERTED = 'contract_reverted'
    ALREADY_MINTED = 'already_minted'
    NO_PAYMENT_EVENT = 'no_payment_event'
    NO_MINT_EVENT = 'no_mint_event'
    NOT_PAYMENT_OWNER = 'not_payment_owner'
    STORAGE_UPLOAD_FAILED = 'storage_upload_failed'
    STORAGE_UNAVAILABLE = 'storage_unavailable'
    EXTERNAL_SERVICE_UNAVAILABLE = 'external_service_unavailable'
    INVALID_STATE = 'invalid_state'

    @property
    def retryable(self):
        return self is ErrorKind.TRANSIENT_RPC


MESSAGES = {
    ErrorKind.TRANSIENT_RPC: 'Network connection error. Please check your connection and try again.',
    ErrorKind.USER_DECLINED: 'Transaction was rejected by the user',
    ErrorKind.INSUFFICIENT_FUNDS: 'Insufficient funds to complete the transaction',
    ErrorKind.NONCE_CONFLICT: 'Transaction failed due to nonce mismatch. Please try again',
    ErrorKind.GAS_LIMIT: 'Transaction requires more gas than allowed. Please try again with higher gas limit',
    ErrorKind.CONTRACT_REVERTED: 'Contract execution failed',
    ErrorKind.ALREADY_MINTED: 'This fortune has already been minted as an NFT',
    ErrorKind.NO_PAYMENT_EVENT: 'No payment event found in transaction',
    ErrorKind.NO_MINT_EVENT: 'Mint transaction succeeded but no NFTMinted event found',
    ErrorKind.NOT_PAYMENT_OWNER: 'Payment user does not match',
    ErrorKind.STORAGE_UPLOAD_FAILED: 'Failed to upload to IPFS',
    ErrorKind.STORAGE_UNAVAILABLE: 'Failed to fetch metadata from all IPFS gateways',
    ErrorKind.EXTERNAL_SERVICE_UNAVAILABLE: 'External service is unavailable',
    ErrorKind.INVALID_STATE: 'Pipeline is not in a state that allows this step',
}


class PipelineError(Exception):
    kind = ErrorKind.INVALID_STATE
    # set when a signed transaction may have reached the network
    tx_hash = None

    def __init__(self, message=None, stage=None, kind=None, cause=None):
        if kind is not None:
            self.kind = kind
        self.message = message or MESSAGES[self.kind]
        self.stage = stage
        self.cause = cause
        super().__init__(self.message)

    def to_dict(self):
        return {'error': self.message, 'kind': self.kind.value, 'stage': self.stage}


class TransientRpcError(PipelineError):
    kind = ErrorKind.TRANSIENT_RPC


class UserDeclined(PipelineError):
    kind = ErrorKind.USER_DECLINED


class InsufficientFunds(PipelineError):
    kind = ErrorKind.INSUFFICIENT_FUNDS


class ContractReverted(PipelineError):
    kind = ErrorKind.CONTRACT_REVERTED


class AlreadyMinted(PipelineError):
    kind = ErrorKind.ALREADY_MINTED


class NoPaymentEvent(PipelineError):
    kind = ErrorKind.NO_PAYMENT_EVENT


class NoMintEvent(PipelineError):
    kind = ErrorKind.NO_MINT_EVENT


class NotPaymentOwner(PipelineError):
    kind = ErrorKind.NOT_PAYMENT_OWNER


class StorageUploadFailed(PipelineError):
    kind = ErrorKind.STORAGE_UPLOAD_FAILED


class StorageUnavailable(PipelineError):
    kind = ErrorKind.STORAGE_UNAVAILABLE


class ExternalServiceUnavailable(PipelineError):
    kind = ErrorKind.EXTERNAL_SERVICE_UNAVAILABLE


class InvalidState(PipelineError):
    kind = ErrorKind.INVALID_STATE


ERROR_CLASSES = {cls.kind: cls for cls in (
    TransientRpcError, UserDeclined, InsufficientFunds, ContractReverted,
    AlreadyMinted, NoPaymentEvent, NoMintEvent, NotPaymentOwner,
    StorageUploadFailed, StorageUnavailable, ExternalServiceUnavailable,
    InvalidState,
)}

# JSON-RPC error codes (EIP-1193 / EIP-1474)
RPC_CODE_KINDS = {
    4001: ErrorKind.USER_DECLINED,
    -32005: ErrorKind.TRANSIENT_RPC,   # limit exceeded
    -32603: ErrorKind.TRANSIENT_RPC,   # internal JSON-RPC error
    429: ErrorKind.TRANSIENT_RPC,
}

# Providers report these under the generic -32000 code, so the message is
# the only signal left.
RPC_MESSAGE_KINDS = (
    ('insufficient funds', ErrorKind.INSUFFICIENT_FUNDS),
    ('user rejected', ErrorKind.USER_DECLINED),
    ('user denied', ErrorKind.USER_DECLINED),
    ('nonce too low', ErrorKind.NONCE_CONFLICT),
    ('replacement transaction underpriced', ErrorKind.NONCE_CONFLICT),
    ('gas required exceeds allowance', ErrorKind.GAS_LIMIT),
    ('intrinsic gas too low', ErrorKind.GAS_LIMIT),
    ('already minted', ErrorKind.ALREADY_MINTED),
    ('timeout', ErrorKind.TRANSIENT_RPC),
    ('timed out', ErrorKind.TRANSIENT_RPC),
    ('network error', ErrorKind.TRANSIENT_RPC),
    ('connection refused', ErrorKind.TRANSIENT_RPC),
    ('rate limit', ErrorKind.TRANSIENT_RPC),
    ('too many requests', ErrorKind.TRANSIENT_RPC),
    ('internal json-rpc error', ErrorKind.TRANSIENT_RPC),
)


def _rpc_error_body(exc):
    response = getattr(exc, 'rpc_response', None)
    if isinstance(response, dict):
        error = response.get('error')
        if isinstance(error, dict):
            return error.get('code'), str(error.get('message', ''))
    return None, str(exc)


def _kind_from_message(message):
    lowered = message.lower()
    for needle, kind in RPC_MESSAGE_KINDS:
        if needle in lowered:
            return kind
    return None


def classify_rpc_error(exc):
    """Map a provider or transport exception onto an ``ErrorKind``."""
    if isinstance(exc, PipelineError):
        return exc.kind

    if isinstance(exc, (requests.Timeout, requests.ConnectionError,
                        ProviderConnectionError, TimeExhausted)):
        return ErrorKind.TRANSIENT_RPC

    if isinstance(exc, requests.HTTPError):
        status = getattr(exc.response, 'status_code', None)
        if status == 429 or (status is not None and status >= 500):
            return ErrorKind.TRANSIENT_RPC
        return ErrorKind.CONTRACT_REVERTED

    if isinstance(exc, ContractLogicError):
        # a revert is final; only the "already minted" guard gets its own kind
        if _kind_from_message(revert_reason(exc)) is ErrorKind.ALREADY_MINTED:
            return ErrorKind.ALREADY_MINTED
        return ErrorKind.CONTRACT_REVERTED

    if isinstance(exc, Web3RPCError):
        code, message = _rpc_error_body(exc)
        if code in RPC_CODE_KINDS:
            return RPC_CODE_KINDS[code]
        return _kind_from_message(message) or ErrorKind.CONTRACT_REVERTED

    return _kind_from_message(str(exc)) or ErrorKind.CONTRACT_REVERTED


def revert_reason(exc):
    """Best-effort revert reason extraction for ContractReverted messages."""
    message = getattr(exc, 'message', None) or str(exc)
    if 'execution reverted:' in message:
        return message.split('execution reverted:', 1)[1].strip()
    return message


def translate_error(exc, stage=None):
    """Wrap any exception into the matching ``PipelineError`` subclass."""
    if isinstance(exc, PipelineError):
        if exc.stage is None:
            exc.stage = stage
        return exc
    kind = classify_rpc_error(exc)
    message = None
    if kind is ErrorKind.CONTRACT_REVERTED:
        message = f"{MESSAGES[kind]}: {revert_reason(exc)}"
    return ERROR_CLASSES.get(kind, PipelineError)(message, stage=stage, kind=kind, cause=exc)
