import os
from decimal import Decimal

from web3 import Web3


def _env_list(name, default):
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(',') if item.strip()]


def to_wei(amount):
    """Convert a CELO amount given as a decimal string into integer wei."""
    return int(Web3.to_wei(Decimal(str(amount)), 'ether'))


def format_celo(amount_wei):
    return f"{Web3.from_wei(amount_wei, 'ether')} CELO"


class Config:
    # Chain
    RPC_URL = os.getenv('CELO_RPC_URL', 'https://forno.celo.org')
    CHAIN_ID = int(os.getenv('CHAIN_ID', '42220'))

    # Contracts (current and legacy versions)
    PAYMENT_CONTRACT_ADDRESS = os.getenv('IMAGE_PAYMENT_CONTRACT_ADDRESS', '')
    LEGACY_PAYMENT_CONTRACT_ADDRESS = os.getenv('IMAGE_PAYMENT_CONTRACT_ADDRESS_V2', '')
    NFT_CONTRACT_ADDRESS = os.getenv('NFT_CONTRACT_ADDRESS', '')
    LEGACY_NFT_CONTRACT_ADDRESS = os.getenv('LEGACY_NFT_CONTRACT_ADDRESS', '')

    # Fees in CELO (18 decimals)
    IMAGE_FEE = os.getenv('IMAGE_FEE', '2.0')
    MINT_FEE = os.getenv('CELO_MINT_PRICE', '2.0')

    # Key used by the backend for storeGeneration / markAsMinted
    BACKEND_PRIVATE_KEY = os.getenv('PRIVATE_KEY')

    # RPC retry policy
    RPC_MAX_RETRIES = int(os.getenv('RPC_MAX_RETRIES', '3'))
    RPC_RETRY_DELAY = float(os.getenv('RPC_RETRY_DELAY', '1.0'))
    RECEIPT_TIMEOUT = int(os.getenv('RECEIPT_TIMEOUT', '180'))

    # Pinata / IPFS
    PINATA_JWT = os.getenv('PINATA_JWT')
    PINATA_API_URL = os.getenv('PINATA_API_URL', 'https://api.pinata.cloud')
    PINATA_GATEWAY = os.getenv('PINATA_GATEWAY', 'https://gateway.pinata.cloud')
    IPFS_FALLBACK_GATEWAYS = _env_list('IPFS_FALLBACK_GATEWAYS', [
        'https://ipfs.io/ipfs/',
        'https://cloudflare-ipfs.com/ipfs/',
        'https://dweb.link/ipfs/',
    ])
    GATEWAY_TIMEOUT = float(os.getenv('GATEWAY_TIMEOUT', '10'))

    # Generation collaborators
    OPENROUTER_API_KEY = os.getenv('OPENROUTER_API_KEY')
    OPENROUTER_URL = os.getenv('OPENROUTER_URL', 'https://openrouter.ai/api/v1/chat/completions')
    FORTUNE_MODEL = os.getenv('FORTUNE_MODEL', 'openai/gpt-4o-mini')
    IMAGE_GENERATION_URL = os.getenv('IMAGE_GENERATION_URL', '')
    IMAGE_UPLOAD_URL = os.getenv('S3_UPLOAD_URL', '')
    HTTP_TIMEOUT = float(os.getenv('HTTP_TIMEOUT', '60'))

    # Transfer-history indexer (Blockscout)
    INDEXER_API_URL = os.getenv('BLOCKSCOUT_API_URL', 'https://celo.blockscout.com/api')

    # Referral tracking
    REFERRAL_DATA_SUFFIX = os.getenv('REFERRAL_DATA_SUFFIX', '')
    REFERRAL_SUBMIT_URL = os.getenv('REFERRAL_SUBMIT_URL', '')

    SITE_URL = os.getenv('SITE_URL', 'https://zodiaccard.xyz')

    # Identity verification cache lifetime (seconds)
    VERIFICATION_TTL = int(os.getenv('VERIFICATION_TTL', '3600'))

    @property
    def image_fee_wei(self):
        return to_wei(self.IMAGE_FEE)

    @property
    def mint_fee_wei(self):
        return to_wei(self.MINT_FEE)

    @property
    def ipfs_gateways(self):
        primary = self.PINATA_GATEWAY.rstrip('/') + '/ipfs/'
        return [primary] + [g for g in self.IPFS_FALLBACK_GATEWAYS if g != primary]


class TestingConfig(Config):
    TESTING = True
    CHAIN_ID = 44787
    PAYMENT_CONTRACT_ADDRESS = '0x1E8461598caf86db994a0395A9389716e99f6d87'
    LEGACY_PAYMENT_CONTRACT_ADDRESS = '0x5FbDB2315678afecb367f032d93F642f64180aa3'
    NFT_CONTRACT_ADDRESS = '0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512'
    LEGACY_NFT_CONTRACT_ADDRESS = '0x9fE46736679d2D9a65F0992F2272dE9f3c7fa6e0'
    RPC_RETRY_DELAY = 0
    PINATA_JWT = 'test-jwt'
