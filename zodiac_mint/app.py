import logging

from flask import Flask, current_app, jsonify, request
from web3 import Web3

from .collection import CollectionReader
from .config import Config, format_celo
from .errors import ErrorKind, PipelineError, StorageUnavailable
from .generation import FortuneService
from .linking import GenerationLinker
from .payment import PaymentStage
from .rpc import RpcClient
from .storage import PinataStorage, is_ipfs_uri
from .verification import ExpiringCache, VerificationService

STATUS_BY_KIND = {
    ErrorKind.NOT_PAYMENT_OWNER: 403,
    ErrorKind.ALREADY_MINTED: 409,
    ErrorKind.INVALID_STATE: 400,
    ErrorKind.NO_PAYMENT_EVENT: 400,
    ErrorKind.INSUFFICIENT_FUNDS: 400,
    ErrorKind.TRANSIENT_RPC: 503,
    ErrorKind.STORAGE_UNAVAILABLE: 503,
    ErrorKind.EXTERNAL_SERVICE_UNAVAILABLE: 503,
}


def build_services(config):
    reader = RpcClient.from_config(config)
    backend = RpcClient.from_config(config, config.BACKEND_PRIVATE_KEY) if config.BACKEND_PRIVATE_KEY else None
    return {
        'storage': PinataStorage.from_config(config),
        'fortune': FortuneService.from_config(config),
        'payments': PaymentStage(reader, config.PAYMENT_CONTRACT_ADDRESS, config.image_fee_wei),
        'linker': (GenerationLinker(backend, config.PAYMENT_CONTRACT_ADDRESS, config.NFT_CONTRACT_ADDRESS)
                   if backend else None),
        'collection': CollectionReader.from_config(config, reader),
        'verification': VerificationService(ExpiringCache(config.VERIFICATION_TTL)),
    }


def validate_link_request(data, fields):
    missing = [name for name in fields if data.get(name) in (None, '')]
    if missing:
        return f'Missing required fields: {", ".join(missing)}'
    if not Web3.is_address(data['userAddress']):
        return 'Invalid wallet address'
    if 'metadataURI' in fields and not is_ipfs_uri(data['metadataURI']):
        return 'Invalid metadataURI format'
    return None


def _service(name):
    return current_app.extensions['zodiac_mint'][name]


def _error_response(exc):
    status = STATUS_BY_KIND.get(exc.kind, 500)
    return jsonify(exc.to_dict()), status


def create_app(config=None, **services):
    config = config or Config()

    app = Flask(__name__)
    app.config.from_object(config)
    app.logger.setLevel(logging.INFO)

    registry = build_services(config) if not services else {}
    registry.update(services)
    app.extensions['zodiac_mint'] = registry

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok', 'chainId': config.CHAIN_ID})

    @app.route('/api/store-generation', methods=['POST'])
    def store_generation():
        data = request.get_json(silent=True) or {}
        error = validate_link_request(data, ('paymentId', 'metadataURI', 'userAddress', 'signature'))
        if error:
            return jsonify({'error': error}), 400

        linker = _service('linker')
        if linker is None:
            app.logger.error('[Store Generation] Private key not configured')
            return jsonify({'error': 'Server configuration error'}), 500

        app.logger.info(f"[Store Generation] Request: paymentId={data['paymentId']} "
                        f"metadataURI={data['metadataURI'][:50]}... userAddress={data['userAddress']}")
        try:
            result = linker.store_generation(int(data['paymentId']), data['metadataURI'], data['userAddress'],
                                             data['signature'])
        except PipelineError as e:
            app.logger.error(f'[Store Generation] Error: {e.message}')
            return _error_response(e)

        return jsonify(result)

    @app.route('/api/mark-minted', methods=['POST'])
    def mark_minted():
        data = request.get_json(silent=True) or {}
        error = validate_link_request(data, ('paymentId', 'tokenId', 'userAddress', 'signature'))
        if error:
            return jsonify({'error': error}), 400

        linker = _service('linker')
        if linker is None:
            app.logger.error('[Mark Minted] Private key not configured')
            return jsonify({'error': 'Server configuration error'}), 500

        try:
            result = linker.mark_minted(int(data['paymentId']), int(data['tokenId']), data['userAddress'],
                                        data['signature'])
        except PipelineError as e:
            app.logger.error(f'[Mark Minted] Error: {e.message}')
            return _error_response(e)

        return jsonify(result)

    @app.route('/api/verify-self/callback', methods=['POST'])
    def verify_self_callback():
        data = request.get_json(silent=True) or {}
        user_id = data.get('userId')
        date_of_birth = data.get('date_of_birth') or data.get('dateOfBirth')
        if not user_id or not date_of_birth:
            return jsonify({'error': 'userId and date_of_birth are required'}), 400

        _service('verification').record(user_id, date_of_birth, verified=data.get('verified', True))
        return jsonify({'status': 'success'})

    @app.route('/api/verify-self/check', methods=['POST'])
    def verify_self_check():
        data = request.get_json(silent=True) or {}
        if not data.get('userId'):
            return jsonify({'error': 'User ID is required'}), 400
        return jsonify(_service('verification').check(data['userId']))

    @app.route('/api/fetch-nft-metadata', methods=['POST'])
    def fetch_nft_metadata():
        data = request.get_json(silent=True) or {}
        token_uri = data.get('tokenURI')
        if not token_uri:
            app.logger.error('[NFT Metadata API] Missing tokenURI in request')
            return jsonify({'error': 'tokenURI is required'}), 400

        storage = _service('storage')
        try:
            metadata, gateway = storage.fetch_json_with_gateway(token_uri)
        except StorageUnavailable as e:
            return jsonify({
                'error': e.message,
                'tokenURI': token_uri,
                'attemptedGateways': storage.gateways,
                'errors': e.cause,
            }), 503

        return jsonify({'success': True, 'metadata': metadata, 'gateway': gateway})

    @app.route('/api/generate-fortune', methods=['POST'])
    def generate_fortune():
        data = request.get_json(silent=True) or {}
        sign = data.get('sign')
        zodiac_type = data.get('zodiacType')
        if not sign or not zodiac_type:
            return jsonify({'error': 'sign and zodiacType are required'}), 400

        fortune = _service('fortune').generate(data.get('username', ''), zodiac_type, sign)
        return jsonify({'fortune': fortune})

    @app.route('/api/payment/verify', methods=['POST'])
    def verify_payment():
        data = request.get_json(silent=True) or {}
        tx_hash = data.get('txHash')
        user_address = data.get('userAddress')
        if not tx_hash or not user_address:
            return jsonify({'error': 'Missing txHash or userAddress'}), 400

        app.logger.info(f'Verifying transaction {tx_hash} for {user_address}')
        try:
            payment = _service('payments').verify(tx_hash, user_address)
        except PipelineError as e:
            app.logger.error(f'Payment verification failed for {tx_hash}: {e.message}')
            return _error_response(e)

        if payment is None:
            return jsonify({'error': 'Transaction not found'}), 404

        return jsonify({
            'success': True,
            'verified': True,
            'paymentId': payment.payment_id,
            'user': payment.user,
            'amount': str(payment.amount),
            'amountFormatted': format_celo(payment.amount),
            'timestamp': payment.timestamp,
        })

    @app.route('/api/payment/verify', methods=['GET'])
    def get_payment():
        payment_id = request.args.get('paymentId', type=int)
        if payment_id is None:
            return jsonify({'error': 'Missing paymentId parameter'}), 400

        try:
            payment = _service('payments').get_payment(payment_id)
        except PipelineError as e:
            app.logger.error(f'Failed to fetch payment {payment_id}: {e.message}')
            return jsonify({'error': 'Failed to fetch payment', 'details': e.message}), 500

        return jsonify({
            'paymentId': payment.payment_id,
            'user': payment.user,
            'amount': str(payment.amount),
            'timestamp': payment.timestamp,
        })

    @app.route('/api/collection/<address>')
    def collection(address):
        if not Web3.is_address(address):
            return jsonify({'error': 'Invalid wallet address'}), 400

        items = _service('collection').collect(Web3.to_checksum_address(address))
        return jsonify({
            'address': address,
            'items': [item.to_dict() for item in items],
        })

    return app
