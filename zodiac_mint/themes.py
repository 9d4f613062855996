"""Seasonal themes for the character image prompt."""
import datetime
from dataclasses import dataclass

REGULAR = 'regular'
WINTER_HOLIDAYS = 'winter-holidays'
NEW_YEAR = 'new-year'

BACKDROP_MARKER = 'Both figures are surrounded by a mesmerizing cosmic backdrop'
BALANCE_MARKER = 'The artwork should maintain a perfect balance'


@dataclass(frozen=True)
class Theme:
    id: str
    name: str
    description: str
    emoji: str
    prompt_modifiers: str = ''

    def info(self):
        return {'id': self.id, 'name': self.name,
                'description': self.description, 'emoji': self.emoji}


SEASONAL_THEMES = [
    Theme(REGULAR, 'Classic Zodiac', 'Traditional cosmic and anime style', '⭐'),
    Theme(
        WINTER_HOLIDAYS, 'Winter Holidays', 'Festive December theme with snow & lights', '🎄',
        'The mystical cosmic backdrop features elegant white snowflakes falling throughout the scene '
        'with detailed crystalline patterns. Festive red and green aurora lights with sophisticated '
        'gradients blend beautifully with the purple and blue nebulae. Warm golden holiday lights create '
        'a magical winter atmosphere with soft bokeh effects and ethereal glow. Delicate frost patterns '
        'add seasonal elegance with fine detail and shimmer. Maintain the mature, semi-realistic anime '
        'art style with detailed shading. The elegant character and their majestic spirit animal '
        'companion remain the central focus of this festive mystical scene',
    ),
    Theme(
        NEW_YEAR, 'New Year', 'Celebration theme with fireworks & sparkles', '🎆',
        'The mystical cosmic backdrop features spectacular firework bursts with intricate light trails '
        'and particle effects exploding across the starry sky in rich, vibrant colors. Golden and silver '
        'metallic confetti with detailed reflections float gracefully through the scene. The nebulae '
        'shimmer with enhanced midnight blue and lustrous gold tones, creating an elegant celebration '
        'atmosphere with sophisticated lighting. Radiant sparkles and gleaming effects illuminate the '
        'scene with refined detail. Maintain the mature, semi-realistic anime art style with detailed '
        'shading. The elegant character and their majestic spirit animal companion remain the central '
        'focus of this celebratory mystical scene',
    ),
]

_THEMES_BY_ID = {theme.id: theme for theme in SEASONAL_THEMES}


def get_theme(theme_id):
    return _THEMES_BY_ID.get(theme_id)


def is_theme_available(theme_id, today=None):
    today = today or datetime.date.today()
    if theme_id == WINTER_HOLIDAYS:
        return today.month == 12
    if theme_id == NEW_YEAR:
        return (today.month == 12 and today.day >= 15) or (today.month == 1 and today.day <= 20)
    return True


def available_themes(today=None):
    return [theme for theme in SEASONAL_THEMES if is_theme_available(theme.id, today)]


def build_seasonal_prompt(base_prompt, theme_id):
    theme = get_theme(theme_id)
    if not theme or not theme.prompt_modifiers:
        return base_prompt

    backdrop_start = base_prompt.find(BACKDROP_MARKER)
    balance_index = base_prompt.find(BALANCE_MARKER)
    if backdrop_start == -1 or balance_index == -1:
        return f'{base_prompt}\n\n{theme.prompt_modifiers}'

    return (f'{base_prompt[:backdrop_start]}Both figures are surrounded by a mesmerizing cosmic setting. '
            f'{theme.prompt_modifiers}\n\n{base_prompt[balance_index:]}')
