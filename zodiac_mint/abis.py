"""Contract ABIs for the image payment contracts and the Zodiac Card NFT."""


def _param(name, type_, indexed=None, components=None, internal_type=None):
    param = {'name': name, 'type': type_, 'internalType': internal_type or type_}
    if indexed is not None:
        param['indexed'] = indexed
    if components is not None:
        param['components'] = components
    return param


def _function(name, inputs=(), outputs=(), mutability='nonpayable'):
    return {
        'inputs': list(inputs),
        'name': name,
        'outputs': list(outputs),
        'stateMutability': mutability,
        'type': 'function',
    }


def _event(name, inputs):
    return {'anonymous': False, 'inputs': list(inputs), 'name': name, 'type': 'event'}


GENERATION_RECORD_COMPONENTS = [
    _param('metadataURI', 'string'),
    _param('tokenId', 'uint256'),
    _param('isMinted', 'bool'),
    _param('createdAt', 'uint256'),
    _param('mintedAt', 'uint256'),
]

_PAYMENT_COMMON = [
    _function('payForImage', mutability='payable'),
    _function('imageFee', outputs=[_param('', 'uint256')], mutability='view'),
    _function('getPayment',
              inputs=[_param('paymentId', 'uint256')],
              outputs=[_param('user', 'address'), _param('amount', 'uint256'),
                       _param('timestamp', 'uint256')],
              mutability='view'),
    _event('ImagePaymentReceived', [
        _param('user', 'address', indexed=True),
        _param('paymentId', 'uint256', indexed=True),
        _param('amount', 'uint256', indexed=False),
        _param('timestamp', 'uint256', indexed=False),
    ]),
]

IMAGE_PAYMENT_ABI = _PAYMENT_COMMON + [
    _function('getGeneration',
              inputs=[_param('paymentId', 'uint256')],
              outputs=[_param('', 'tuple', components=GENERATION_RECORD_COMPONENTS,
                              internal_type='struct ZodiacImagePayment.Generation')],
              mutability='view'),
    _function('storeGeneration',
              inputs=[_param('paymentId', 'uint256'), _param('metadataURI', 'string')]),
    _function('markAsMinted',
              inputs=[_param('paymentId', 'uint256'), _param('tokenId', 'uint256')]),
    _function('getUserCollection',
              inputs=[_param('user', 'address')],
              outputs=[_param('paymentIds', 'uint256[]'),
                       _param('generations', 'tuple[]', components=GENERATION_RECORD_COMPONENTS,
                              internal_type='struct ZodiacImagePayment.Generation[]')],
              mutability='view'),
    _event('GenerationStored', [
        _param('paymentId', 'uint256', indexed=True),
        _param('metadataURI', 'string', indexed=False),
    ]),
    _event('GenerationMinted', [
        _param('paymentId', 'uint256', indexed=True),
        _param('tokenId', 'uint256', indexed=True),
    ]),
]

# The legacy payment contract predates generation tracking.
LEGACY_IMAGE_PAYMENT_ABI = list(_PAYMENT_COMMON)

ZODIAC_NFT_ABI = [
    _function('mint',
              inputs=[_param('to', 'address'), _param('tokenURI', 'string')],
              outputs=[_param('', 'uint256')],
              mutability='payable'),
    _function('mintFee', outputs=[_param('', 'uint256')], mutability='view'),
    _function('nextTokenId', outputs=[_param('', 'uint256')], mutability='view'),
    _function('tokenURI', inputs=[_param('tokenId', 'uint256')],
              outputs=[_param('', 'string')], mutability='view'),
    _function('ownerOf', inputs=[_param('tokenId', 'uint256')],
              outputs=[_param('', 'address')], mutability='view'),
    _function('balanceOf', inputs=[_param('owner', 'address')],
              outputs=[_param('', 'uint256')], mutability='view'),
    _event('NFTMinted', [
        _param('to', 'address', indexed=True),
        _param('tokenId', 'uint256', indexed=True),
        _param('tokenURI', 'string', indexed=False),
    ]),
    _event('Transfer', [
        _param('from', 'address', indexed=True),
        _param('to', 'address', indexed=True),
        _param('tokenId', 'uint256', indexed=True),
    ]),
]

PAYMENT_EVENT_TOPIC_COUNT = 3  # signature + user + paymentId
