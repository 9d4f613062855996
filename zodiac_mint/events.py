"""
Identifier extraction from transaction receipts.

Structured ABI decoding is the primary path for both the payment and the
mint receipts. Raw topic parsing is kept only for payment logs that come from
the payment contract but do not decode against the current event ABI (older
contract versions emit a slightly different event shape); as long as such a
log carries the signature, user and paymentId topics, the id is read from
topic slot 2.
"""
import logging

from hexbytes import HexBytes
from web3.exceptions import MismatchedABI, Web3ValueError

from .abis import PAYMENT_EVENT_TOPIC_COUNT
from .errors import NoMintEvent, NoPaymentEvent

logger = logging.getLogger(__name__)

ZERO_ADDRESS = '0x0000000000000000000000000000000000000000'
PAYMENT_ID_TOPIC = 2

_DECODE_ERRORS = (MismatchedABI, Web3ValueError, ValueError, KeyError, IndexError)


def _same_address(a, b):
    return bool(a) and bool(b) and str(a).lower() == str(b).lower()


def raw_payment_id(log):
    """Interpret topic slot 2 of a payment log as a big-endian uint256."""
    topics = log['topics']
    if len(topics) < PAYMENT_EVENT_TOPIC_COUNT:
        return None
    return int.from_bytes(bytes(HexBytes(topics[PAYMENT_ID_TOPIC])), 'big')


def _decode(event, log):
    try:
        return event.process_log(log)
    except _DECODE_ERRORS:
        return None


def decode_payment_event(receipt_logs, payment_contract):
    """Return the decoded ``ImagePaymentReceived`` args, or ``None``."""
    event = payment_contract.events.ImagePaymentReceived()
    for log in receipt_logs:
        if not _same_address(log['address'], payment_contract.address):
            continue
        decoded = _decode(event, log)
        if decoded is not None:
            return decoded['args']
    return None


def decode_payment_id(receipt_logs, payment_contract):
    args = decode_payment_event(receipt_logs, payment_contract)
    if args is not None:
        payment_id = int(args['paymentId'])
        logger.info(f'[Payment] Extracted paymentId from receipt: {payment_id}')
        return payment_id

    for log in receipt_logs:
        if not _same_address(log['address'], payment_contract.address):
            continue
        payment_id = raw_payment_id(log)
        if payment_id is not None:
            logger.warning(f'[Payment] Payment log did not match the event ABI, '
                           f'using raw topic value: {payment_id}')
            return payment_id

    raise NoPaymentEvent(stage='payment')


def decode_minted_token_id(receipt_logs, nft_contract, recipient=None):
    """Recover the token id from ``NFTMinted``, or a mint ``Transfer`` from the zero address."""
    minted = nft_contract.events.NFTMinted()
    transfer = nft_contract.events.Transfer()

    for log in receipt_logs:
        if not _same_address(log['address'], nft_contract.address):
            continue
        decoded = _decode(minted, log)
        if decoded is not None:
            return int(decoded['args']['tokenId'])

    for log in receipt_logs:
        if not _same_address(log['address'], nft_contract.address):
            continue
        decoded = _decode(transfer, log)
        if decoded is None or not _same_address(decoded['args']['from'], ZERO_ADDRESS):
            continue
        if recipient and not _same_address(decoded['args']['to'], recipient):
            continue
        return int(decoded['args']['tokenId'])

    raise NoMintEvent(stage='mint')
