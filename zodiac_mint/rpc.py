import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from eth_account import Account
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import TransactionNotFound

from .errors import (
    ContractReverted,
    ErrorKind,
    InvalidState,
    PipelineError,
    TransientRpcError,
    classify_rpc_error,
    translate_error,
)

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_DELAY = 1.0  # seconds


def to_hex(value):
    return HexBytes(value).to_0x_hex()


@dataclass(frozen=True)
class ContractCall:
    address: str
    abi: Sequence[dict]
    function: str
    args: Sequence[Any] = ()
    value: int = 0
    data_suffix: bytes = b''


@dataclass
class Receipt:
    tx_hash: str
    status: int
    block_number: int
    logs: list = field(default_factory=list)


def retry_operation(operation, retries=MAX_RETRIES, delay=RETRY_DELAY, stage=None, sleep=time.sleep):
    """Run ``operation`` retrying only transient RPC failures.

    ``retries`` is the number of additional attempts after the first one and
    the delay between attempts is fixed. Anything else is translated into a
    ``PipelineError`` and raised on the spot.
    """
    attempt = 0
    while True:
        try:
            return operation()
        except Exception as exc:
            kind = classify_rpc_error(exc)
            if kind is ErrorKind.TRANSIENT_RPC and attempt < retries:
                attempt += 1
                logger.warning(f"RPC operation failed, retrying... ({retries - attempt + 1} attempts left): {exc}")
                sleep(delay)
                continue
            raise translate_error(exc, stage=stage)


class RpcClient:
    """Simulate / submit / confirm wrapper around a web3 connection.

    The client signs locally with ``account``; read-only use needs no account.
    """

    def __init__(self, web3, account=None, chain_id=None, retries=MAX_RETRIES,
                 retry_delay=RETRY_DELAY, receipt_timeout=180, sleep=time.sleep):
        self.web3 = web3
        self.account = account
        self.chain_id = chain_id
        self.retries = retries
        self.retry_delay = retry_delay
        self.receipt_timeout = receipt_timeout
        self._sleep = sleep

    @classmethod
    def from_config(cls, config, private_key=None):
        web3 = Web3(Web3.HTTPProvider(config.RPC_URL))
        account = Account.from_key(private_key) if private_key else None
        return cls(
            web3,
            account=account,
            chain_id=config.CHAIN_ID,
            retries=config.RPC_MAX_RETRIES,
            retry_delay=config.RPC_RETRY_DELAY,
            receipt_timeout=config.RECEIPT_TIMEOUT,
        )

    @property
    def address(self) -> Optional[str]:
        return self.account.address if self.account else None

    def contract(self, address, abi):
        return self.web3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    def _retry(self, operation, stage):
        return retry_operation(operation, retries=self.retries, delay=self.retry_delay,
                               stage=stage, sleep=self._sleep)

    def read_contract(self, address, abi, function, args=()):
        contract = self.contract(address, abi)

        def read():
            return getattr(contract.functions, function)(*args).call()

        return self._retry(read, stage=f'read:{function}')

    def get_balance(self, address):
        return self._retry(lambda: self.web3.eth.get_balance(Web3.to_checksum_address(address)),
                           stage='balance')

    def write_contract(self, call: ContractCall) -> str:
        """Simulate then submit ``call``; returns the transaction hash hex."""
        if self.account is None:
            raise InvalidState('Wallet not connected', stage=f'write:{call.function}')

        contract = self.contract(call.address, call.abi)
        sender = self.account.address

        stage = f'write:{call.function}'

        def prepare():
            fn = getattr(contract.functions, call.function)(*call.args)
            params = {'from': sender, 'value': call.value}

            # Simulation surfaces reverts before anything is signed
            fn.call(params)

            tx = fn.build_transaction({
                **params,
                'chainId': self.chain_id or self.web3.eth.chain_id,
                'nonce': self.web3.eth.get_transaction_count(sender, 'pending'),
            })
            if call.data_suffix:
                tx['data'] = tx['data'] + call.data_suffix.hex()
                tx['gas'] = self.web3.eth.estimate_gas({
                    'from': sender,
                    'to': tx['to'],
                    'value': call.value,
                    'data': tx['data'],
                })

            return self.web3.eth.account.sign_transaction(tx, self.account.key)

        signed = self._retry(prepare, stage=stage)
        tx_hash = to_hex(signed.hash)

        def send():
            # resends reuse these signed bytes and their nonce
            try:
                self.web3.eth.send_raw_transaction(signed.raw_transaction)
            except Exception:
                if self._is_known(tx_hash):
                    return
                raise

        try:
            self._retry(send, stage=stage)
        except PipelineError as exc:
            if exc.kind is ErrorKind.TRANSIENT_RPC:
                exc.tx_hash = tx_hash
            raise

        logger.info(f'{call.function} transaction sent with hash: {tx_hash}')
        return tx_hash

    def _is_known(self, tx_hash):
        try:
            self.web3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return False
        return True

    def wait_for_transaction(self, tx_hash) -> Receipt:
        def wait():
            return self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)

        try:
            raw = self._retry(wait, stage='confirm')
        except TransientRpcError as exc:
            raise TransientRpcError(
                'Transaction confirmation timed out. The transaction may still be processing',
                stage='confirm', cause=exc.cause,
            ) from exc

        receipt = Receipt(
            tx_hash=to_hex(raw['transactionHash']),
            status=raw['status'],
            block_number=raw['blockNumber'],
            logs=list(raw['logs']),
        )
        if receipt.status != 1:
            raise ContractReverted('Transaction failed on chain', stage='confirm')
        logger.info(f'Transaction confirmed in block {receipt.block_number}: {receipt.tx_hash}')
        return receipt

    def get_transaction(self, tx_hash):
        """Return ``(transaction, receipt)``.

        ``(None, None)`` when the node has never seen ``tx_hash``; the receipt
        is ``None`` while the transaction is still pending.
        """
        def lookup():
            try:
                tx = self.web3.eth.get_transaction(tx_hash)
            except TransactionNotFound:
                return None, None
            try:
                return tx, self.web3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                return tx, None

        return self._retry(lookup, stage='lookup')

    def find_transaction(self, tx_hash) -> Optional[Receipt]:
        """Confirm an earlier ``tx_hash``; ``None`` if the node does not know it.

        A transaction the node has dropped can be replaced safely: the
        replacement takes the same pending nonce, so at most one of them is
        ever mined.
        """
        tx, _ = self.get_transaction(tx_hash)
        if tx is None:
            logger.warning(f'Transaction {tx_hash} is unknown to the node')
            return None
        return self.wait_for_transaction(tx_hash)
