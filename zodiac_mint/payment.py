import logging
from dataclasses import replace

from .abis import IMAGE_PAYMENT_ABI
from .config import format_celo
from .errors import (
    ContractReverted,
    InsufficientFunds,
    InvalidState,
    NoPaymentEvent,
    NotPaymentOwner,
    PipelineError,
)
from .events import decode_payment_id
from .models import GenerationRecord, PaymentRecord
from .rpc import ContractCall
from .state import PipelineState

logger = logging.getLogger(__name__)


class PaymentStage:
    """Submits ``payForImage`` and recovers the paymentId from the receipt."""

    def __init__(self, rpc, payment_address, fee_wei, abi=IMAGE_PAYMENT_ABI):
        self.rpc = rpc
        self.payment_address = payment_address
        self.fee_wei = fee_wei
        self.abi = abi

    @property
    def contract(self):
        return self.rpc.contract(self.payment_address, self.abi)

    def get_payment(self, payment_id):
        result = self.rpc.read_contract(self.payment_address, self.abi, 'getPayment', [payment_id])
        return PaymentRecord.from_call(payment_id, result)

    def get_generation(self, payment_id):
        result = self.rpc.read_contract(self.payment_address, self.abi, 'getGeneration', [payment_id])
        return GenerationRecord.from_call(payment_id, result)

    def verify(self, tx_hash, user_address):
        """Check that ``tx_hash`` is a confirmed payment by ``user_address``.

        Returns the on-chain ``PaymentRecord``, or ``None`` when the
        transaction is unknown.
        """
        tx, receipt = self.rpc.get_transaction(tx_hash)
        if receipt is None:
            return None
        if receipt['status'] != 1:
            raise InvalidState('Transaction failed', stage='verify')
        if str(receipt['to']).lower() != self.payment_address.lower():
            raise InvalidState('Transaction not to payment contract', stage='verify')
        if str(tx['from']).lower() != user_address.lower():
            raise NotPaymentOwner('Transaction sender does not match user address', stage='verify')

        payment_id = decode_payment_id(receipt['logs'], self.contract)
        payment = self.get_payment(payment_id)
        if payment.user.lower() != user_address.lower():
            raise NotPaymentOwner(stage='verify')
        if payment.amount < self.fee_wei:
            raise InsufficientFunds('Insufficient payment amount', stage='verify')

        logger.info(f'[Payment] Verified payment {payment_id} from {user_address} in {tx_hash}')
        return payment

    def _check_balance(self):
        balance = self.rpc.get_balance(self.rpc.address)
        if balance < self.fee_wei:
            raise InsufficientFunds(
                f'Insufficient CELO balance. You need {format_celo(self.fee_wei)} to generate an image.',
                stage='payment')

    def pay(self, run):
        """Pay once for ``run``.

        A run that already carries ``payment_tx_hash`` is never charged again:
        the earlier transaction is confirmed and decoded instead. A new
        payment is sent only when the node has no record of that hash.
        """
        if run.failed or run.reached(PipelineState.PAID):
            return run

        tx_hash = run.payment_tx_hash
        try:
            receipt = None
            if tx_hash:
                logger.info(f'[Payment] Reconciling earlier payment transaction {tx_hash}')
                receipt = self.rpc.find_transaction(tx_hash)
            if receipt is None:
                tx_hash = None
                self._check_balance()
                tx_hash = self.rpc.write_contract(ContractCall(
                    address=self.payment_address,
                    abi=self.abi,
                    function='payForImage',
                    value=self.fee_wei,
                ))
                receipt = self.rpc.wait_for_transaction(tx_hash)
            payment_id = decode_payment_id(receipt.logs, self.contract)
        except NoPaymentEvent as exc:
            # The payment is on-chain; keep the hash so it can be reconciled
            logger.error(f'[Payment] No payment event in {tx_hash}, manual reconciliation needed')
            return replace(run, payment_tx_hash=tx_hash).fail(exc)
        except ContractReverted as exc:
            # reverted payments charge nothing, so the next attempt pays afresh
            exc.stage = 'payment'
            logger.error(f'[Payment] Payment reverted: {exc.message}')
            return replace(run, payment_tx_hash=None).fail(exc)
        except PipelineError as exc:
            exc.stage = 'payment'
            tx_hash = tx_hash or exc.tx_hash
            logger.error(f'[Payment] Payment failed: {exc.message}')
            return replace(run, payment_tx_hash=tx_hash).fail(exc)

        logger.info(f'[Payment] Payment {payment_id} confirmed in {tx_hash}')
        return run.advance(
            PipelineState.PAID,
            payment_id=payment_id,
            payment_tx_hash=tx_hash,
            payment_amount=self.fee_wei,
        )
