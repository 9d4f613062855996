import logging

from .errors import InvalidState, StorageUnavailable
from .generation import FortuneService, GenerationOrchestrator, ImageService
from .linking import HttpLinkClient, MetadataLinkingStage
from .minting import MintStage, ReferralTracker
from .payment import PaymentStage
from .rpc import RpcClient
from .state import PipelineRun, PipelineState, ZodiacRequest
from .storage import DurableImageStore, PinataStorage
from .themes import REGULAR

logger = logging.getLogger(__name__)


class FortunePipeline:
    """pay -> generate text -> generate image -> link -> mint"""

    def __init__(self, payment, generator, linking, minting, storage):
        self.payment = payment
        self.generator = generator
        self.linking = linking
        self.minting = minting
        self.storage = storage

    @classmethod
    def from_config(cls, config, private_key, backend_url, session=None):
        rpc = RpcClient.from_config(config, private_key)
        storage = PinataStorage.from_config(config, session=session)
        payment = PaymentStage(rpc, config.PAYMENT_CONTRACT_ADDRESS, config.image_fee_wei)
        generator = GenerationOrchestrator(
            FortuneService.from_config(config, session=session),
            ImageService(config.IMAGE_GENERATION_URL, timeout=config.HTTP_TIMEOUT, session=session),
            DurableImageStore(config.IMAGE_UPLOAD_URL, timeout=config.HTTP_TIMEOUT, session=session),
        )
        link_client = HttpLinkClient(backend_url, rpc.account, timeout=config.HTTP_TIMEOUT, session=session)
        linking = MetadataLinkingStage(storage, link_client, rpc.address)
        minting = MintStage(
            rpc,
            config.NFT_CONTRACT_ADDRESS,
            storage,
            payment,
            link_client,
            config.mint_fee_wei,
            referral=ReferralTracker.from_config(config, session=session),
            site_url=config.SITE_URL,
        )
        return cls(payment, generator, linking, minting, storage)

    @property
    def steps(self):
        return [
            self.payment.pay,
            self.generator.generate_text,
            self.generator.generate_image,
            self.linking.link,
            self.minting.mint,
        ]

    def start(self, request):
        return self.run(PipelineRun(request=request))

    def run(self, run):
        """Drive ``run`` forward until MINTED or the first failure.

        Steps already reached are skipped, so a failed run can be passed back
        in after ``run.resume()``.
        """
        for step in self.steps:
            run = step(run)
            if run.failed:
                logger.error(f'Pipeline stopped at {run.error.stage}: {run.error.message}')
                break
        return run

    def resume(self, payment_id, request=None):
        """Rebuild a run for ``payment_id`` from what the contracts hold."""
        payment = self.payment.get_payment(payment_id)
        generation = self.payment.get_generation(payment_id)
        logger.info(f'Resuming payment {payment_id}: linked={generation.is_linked} minted={generation.is_minted}')

        document = {}
        if generation.is_linked:
            try:
                document = self.storage.fetch_json(generation.metadata_uri)
            except StorageUnavailable:
                logger.warning(f'Could not load generation metadata {generation.metadata_uri}')

        if request is None:
            if not document:
                raise InvalidState(f'No generation data available for payment {payment_id}', stage='resume')
            request = ZodiacRequest(
                username=document.get('username', ''),
                zodiac_type=document.get('zodiacType'),
                sign=document.get('zodiacSign'),
                theme=document.get('theme') or REGULAR,
            )

        if generation.is_minted:
            state = PipelineState.MINTED
        elif generation.is_linked:
            state = PipelineState.LINKED
        else:
            state = PipelineState.PAID

        return PipelineRun(
            request=request,
            state=state,
            payment_id=payment_id,
            payment_tx_hash=document.get('paymentTxHash'),
            payment_amount=payment.amount,
            fortune=document.get('fortuneText'),
            image_url=document.get('imageUrl'),
            metadata_uri=generation.metadata_uri or None,
            token_id=generation.token_id if generation.is_minted else None,
        )
