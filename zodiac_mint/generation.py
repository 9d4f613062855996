import logging
import uuid

import requests

from .errors import ExternalServiceUnavailable
from .state import PipelineState
from .themes import build_seasonal_prompt
from .zodiac import find_sign

logger = logging.getLogger(__name__)

MAX_PROMPT_LENGTH = 4000

SYSTEM_PROMPT = 'You are a mystical fortune teller specializing in fortunes for crypto projects based on zodiac signs.'

ZODIAC_SPECIALTIES = {
    'western': " You specialize in Western astrology based on the sun's position at birth.",
    'chinese': ' You specialize in Chinese zodiac based on the 12-year animal cycle.',
    'vedic': ' You specialize in Vedic astrology (Jyotish) based on actual constellations.',
    'mayan': " You specialize in Mayan Tzolk'in calendar and its 20 day signs.",
}

FORTUNE_PROMPT = """Generate a positive, optimistic crypto fortune for a person with the {zodiac_type} zodiac sign of {sign}.
The fortune should be 1-2 sentences long, and include:
1. A reference to their zodiac sign's traits
2. A positive prediction about their crypto investments or projects
3. Mention their potential for creating impactful blockchain solutions or contributing to web3
4. A bit of mystical/celestial language
5. Keep it upbeat and encouraging, focusing on growth and development (not market conditions)

Format it as a direct message to the user without any additional text."""

IMAGE_PROMPT = """Create a stunning digital artwork in an anime and cosmic art style featuring two main subjects: a mystical character and their spirit animal companion representing {sign} of the {zodiac_type} zodiac.
The first subject is an ethereal anime character with an otherworldly presence. They have flowing hair in shades of celestial blue and turquoise, adorned with constellation patterns of {sign}. Their elegant robes shimmer with cosmic energy and feature intricate {zodiac_type} zodiac symbols woven into the fabric. Their eyes reflect the wisdom of the stars, and they hold a glowing Celo blockchain symbol that pulses with ethereal energy.
The second subject is a majestic spirit animal that embodies the essence of {sign}. This mystical creature radiates with stellar energy, its form partially composed of stardust and constellation lines. The animal's features blend traditional {sign} symbolism with magical elements, creating a powerful guardian presence beside the character.
Both figures are surrounded by a mesmerizing cosmic backdrop featuring swirling nebulae in deep purples and blues, with the Celo blockchain symbol appearing as a constellation pattern among the stars. The composition creates a harmonious balance between the character, their spirit animal, and the technological elements of the blockchain, all unified by the mystical energy of {sign}.
The artwork should maintain a perfect balance between anime aesthetics, zodiac mysticism, and blockchain symbolism, creating a captivating and meaningful representation of {sign}'s spiritual energy in the digital age."""


def fallback_fortune(zodiac_type, sign):
    element = find_sign(zodiac_type, sign).element
    energy = f'{element} energy' if element != 'Unknown' else 'celestial energy'
    return (f'As a {sign}, your crypto journey looks promising! The stars align for financial growth, '
            f'and your natural {energy} will guide you to make wise investment choices. '
            f'Trust your intuition this week.')


def build_image_prompt(zodiac_type, sign, theme):
    return build_seasonal_prompt(IMAGE_PROMPT.format(sign=sign, zodiac_type=zodiac_type), theme)


class FortuneService:
    """Text completion through OpenRouter; never fails, falls back to a template."""

    def __init__(self, api_key, url, model, timeout=60, session=None, site_url=None):
        self.api_key = api_key
        self.url = url
        self.model = model
        self.timeout = timeout
        self.site_url = site_url
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config, session=None):
        return cls(config.OPENROUTER_API_KEY, config.OPENROUTER_URL, config.FORTUNE_MODEL,
                   timeout=config.HTTP_TIMEOUT, session=session, site_url=config.SITE_URL)

    def _complete(self, zodiac_type, sign):
        response = self.session.post(
            self.url,
            headers={
                'Content-Type': 'application/json',
                'Authorization': f'Bearer {self.api_key}',
                'HTTP-Referer': self.site_url or '',
                'X-Title': 'Zodiac Fortune Teller',
            },
            json={
                'model': self.model,
                'messages': [
                    {'role': 'system', 'content': SYSTEM_PROMPT + ZODIAC_SPECIALTIES.get(zodiac_type, '')},
                    {'role': 'user', 'content': FORTUNE_PROMPT.format(zodiac_type=zodiac_type, sign=sign)},
                ],
                'max_tokens': 150,
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()['choices'][0]['message']['content'].strip()

    def generate(self, username, zodiac_type, sign):
        if not self.api_key:
            logger.warning('No OpenRouter API key found, using fallback fortune')
            return fallback_fortune(zodiac_type, sign)

        try:
            fortune = self._complete(zodiac_type, sign)
        except (requests.RequestException, ValueError, KeyError, IndexError, TypeError) as exc:
            logger.error(f'Fortune generation failed for {username}, using fallback: {exc}')
            return fallback_fortune(zodiac_type, sign)

        return fortune or fallback_fortune(zodiac_type, sign)


class ImageService:
    """Image generation endpoint returning a transient provider URL."""

    def __init__(self, url, timeout=120, session=None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def generate(self, prompt):
        if not prompt or len(prompt) > MAX_PROMPT_LENGTH:
            raise ExternalServiceUnavailable(
                f'Invalid prompt. Must be a non-empty string of at most {MAX_PROMPT_LENGTH} characters.',
                stage='image')
        if not self.url:
            raise ExternalServiceUnavailable('Image generation service is not configured.', stage='image')

        request_id = uuid.uuid4().hex[:7]
        logger.info(f'[{request_id}] Initiating image generation request with prompt length: {len(prompt)}')
        try:
            response = self.session.post(self.url, json={'prompt': prompt}, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ExternalServiceUnavailable(f'Failed to generate image: {exc}', stage='image', cause=exc) from exc

        if not response.ok:
            logger.error(f'[{request_id}] Image generation failed: {response.status_code} {response.text}')
            raise ExternalServiceUnavailable(
                f'Failed to generate image: {response.status_code} {response.reason}', stage='image')

        try:
            image_url = response.json().get('imageUrl')
        except ValueError as exc:
            raise ExternalServiceUnavailable('Image service returned invalid JSON', stage='image', cause=exc) from exc
        if not image_url:
            raise ExternalServiceUnavailable('No image URL returned', stage='image')

        logger.info(f'[{request_id}] Image generation successful')
        return image_url


class GenerationOrchestrator:
    """Produces the fortune text and the character image once per run."""

    def __init__(self, fortune_service, image_service, image_store):
        self.fortune_service = fortune_service
        self.image_service = image_service
        self.image_store = image_store

    def generate_text(self, run):
        if run.failed or run.reached(PipelineState.TEXT_DONE):
            return run
        req = run.request
        fortune = self.fortune_service.generate(req.username, req.zodiac_type, req.sign)
        return run.advance(PipelineState.TEXT_DONE, fortune=fortune)

    def generate_image(self, run):
        if run.failed or run.reached(PipelineState.IMAGE_DONE):
            return run
        req = run.request
        prompt = build_image_prompt(req.zodiac_type, req.sign, req.theme)
        try:
            transient_url = self.image_service.generate(prompt)
        except ExternalServiceUnavailable as exc:
            logger.error(f'Failed to generate image for payment {run.payment_id}: {exc}')
            return run.fail(ExternalServiceUnavailable(
                'Failed to generate your character image. Please try again.', stage='image', cause=exc))

        image_url = self.image_store.persist(transient_url, req.username, req.sign, req.zodiac_type)
        return run.advance(PipelineState.IMAGE_DONE, image_url=image_url or transient_url)

    def run(self, run):
        if run.failed:
            return run
        run = self.generate_text(run)
        return self.generate_image(run)
