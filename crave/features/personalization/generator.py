"""
Theme personalization.

Pure function of a profile snapshot: no randomness, no I/O. The output is
generated once when a theme is unlocked and stored verbatim, so the same
profile must always produce the same payload.
"""

import logging
import math
from typing import Any, Dict, List, Mapping

from crave.models.account import ProfileSnapshot
from crave.models.theme import ColorScheme, ThemeData

logger = logging.getLogger("crave.personalization")

CRAVING_COLORS = {
    "nofap": "#FF6B6B",
    "sugar": "#FFD93D",
    "shopping": "#6BCF7F",
    "smoking_vaping": "#4ECDC4",
    "social_media": "#A8E6CF",
}
DEFAULT_COLOR = "#FF8C42"

MAX_QUOTES = 5

BASE_QUOTES = [
    "Every day is a new chance to grow stronger.",
    "You're building the life you want, one day at a time.",
    "Your future self will thank you for today's effort.",
]

SEVERITY_QUOTES = {
    "severe": [
        "You've faced harder challenges. This is nothing.",
        "Your strength in difficult times shows your true character.",
        "Progress isn't always linear, but you're moving forward.",
    ],
    "mild": [
        "Small steps lead to big changes.",
        "Consistency is your superpower.",
        "You're creating lasting change.",
    ],
}

MOTIVATION_QUOTES = {
    "health": [
        "Your health is your greatest wealth.",
        "Every choice you make is an investment in your future.",
        "Your body thanks you for every positive decision.",
    ],
    "relationships": [
        "The people you love deserve the best version of you.",
        "Your relationships improve when you improve yourself.",
        "You're becoming the partner/friend/family member you want to be.",
    ],
}

STREAK_QUOTES = [
    (30, [
        "30 days of consistency! You're unstoppable!",
        "You've proven you can do anything you set your mind to.",
        "This is just the beginning of your transformation.",
    ]),
    (7, [
        "A week of progress! Keep the momentum going!",
        "You're building powerful habits.",
        "One week down, many more to go!",
    ]),
]

STREAK_BADGES = [(7, "7-Day Warrior"), (30, "30-Day Champion"), (90, "90-Day Legend")]
LEVEL_BADGES = [(10, "Level 10 Master"), (20, "Level 20 Expert"), (30, "Level 30 Hero")]
XP_BADGES = [(1000, "XP Master"), (5000, "XP Legend")]

DEFAULT_THEME = ThemeData(
    color_scheme=ColorScheme(
        primary="#FF8C42",
        secondary="#FFA66B",
        accent="#E6732F",
        background="#FFF5ED",
    ),
    motivational_quotes=["Keep going! You've got this!"],
    badges=[],
)


def craving_color(craving_type: Any) -> str:
    return CRAVING_COLORS.get(craving_type or "", DEFAULT_COLOR)


def adjust_brightness(hex_color: str, percent: float) -> str:
    """Shift every RGB channel by ``percent`` of full scale, clamped to 0..255."""
    num = int(hex_color.lstrip("#"), 16)
    # round half up, so -25.5 becomes -25
    amount = math.floor(2.55 * percent * 100 + 0.5)
    r = min(255, max(0, (num >> 16) + amount))
    g = min(255, max(0, ((num >> 8) & 0xFF) + amount))
    b = min(255, max(0, (num & 0xFF) + amount))
    return f"#{r:02x}{g:02x}{b:02x}"


def _section(preferences: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = preferences.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise TypeError(f"preferences.{key} must be an object")
    return value


def generate_quotes(profile: ProfileSnapshot) -> List[str]:
    preferences = profile.preferences or {}
    quiz = _section(preferences, "quizAnswers")
    personalization = _section(preferences, "personalization")

    quotes = list(BASE_QUOTES)
    quotes.extend(SEVERITY_QUOTES.get(quiz.get("severity"), []))
    quotes.extend(MOTIVATION_QUOTES.get(personalization.get("motivation"), []))
    for threshold, streak_quotes in STREAK_QUOTES:
        if profile.streak >= threshold:
            quotes.extend(streak_quotes)
            break

    unique = list(dict.fromkeys(quotes))
    return unique[:MAX_QUOTES]


def generate_badges(profile: ProfileSnapshot) -> List[str]:
    badges = [name for threshold, name in STREAK_BADGES if profile.streak >= threshold]
    badges += [name for threshold, name in LEVEL_BADGES if profile.level >= threshold]
    badges += [name for threshold, name in XP_BADGES if profile.xp >= threshold]
    return badges


def generate_theme_personalization(profile: ProfileSnapshot, theme_id: str = "premium") -> ThemeData:
    """Build the theme payload for ``profile``. Malformed profile data yields DEFAULT_THEME."""
    try:
        primary = craving_color(profile.primary_craving)
        color_scheme = ColorScheme(
            primary=primary,
            secondary=adjust_brightness(primary, 0.2),
            accent=adjust_brightness(primary, -0.1),
            background=adjust_brightness(primary, 0.9),
        )

        special_effects: Dict[str, Any] = {}
        if profile.streak >= 30:
            special_effects = {"glow": True, "animation": "subtle"}

        return ThemeData(
            color_scheme=color_scheme,
            motivational_quotes=generate_quotes(profile),
            badges=generate_badges(profile),
            special_effects=special_effects or None,
        )
    except (TypeError, ValueError, AttributeError) as e:
        logger.warning(
            "personalization.fallback",
            extra={"user_id": profile.user_id, "event_type": theme_id, "error_message": str(e)},
        )
        return DEFAULT_THEME
