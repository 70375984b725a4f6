from crave.features.personalization.generator import (
    DEFAULT_THEME,
    MAX_QUOTES,
    adjust_brightness,
    generate_badges,
    generate_theme_personalization,
)
from crave.models.account import ProfileSnapshot


def _profile(**kwargs):
    return ProfileSnapshot(user_id="u1", **kwargs)


def test_same_profile_same_payload():
    profile = _profile(primary_craving="nofap", streak=31, level=12, xp=1200,
                       preferences={"quizAnswers": {"severity": "severe"}})

    first = generate_theme_personalization(profile)
    second = generate_theme_personalization(profile)

    assert first == second
    assert first.model_dump() == second.model_dump()


def test_color_scheme_from_craving():
    theme = generate_theme_personalization(_profile(primary_craving="nofap"))

    assert theme.color_scheme.primary == "#FF6B6B"
    assert theme.color_scheme.secondary == "#ff9e9e"
    assert theme.color_scheme.accent == "#e65252"
    assert theme.color_scheme.background == "#ffffff"


def test_unknown_craving_uses_default_color():
    theme = generate_theme_personalization(_profile(primary_craving="gaming"))
    assert theme.color_scheme.primary == "#FF8C42"


def test_brightness_rounds_half_up_and_clamps():
    assert adjust_brightness("#000000", -0.1) == "#000000"
    assert adjust_brightness("#808080", -0.1) == "#676767"
    assert adjust_brightness("#FFFFFF", 0.2) == "#ffffff"


def test_quotes_are_unique_and_capped():
    profile = _profile(
        streak=40,
        preferences={"quizAnswers": {"severity": "mild"}, "personalization": {"motivation": "health"}},
    )
    quotes = generate_theme_personalization(profile).motivational_quotes

    assert len(quotes) == MAX_QUOTES
    assert len(set(quotes)) == len(quotes)
    assert quotes[0] == "Every day is a new chance to grow stronger."
    assert quotes[3] == "Small steps lead to big changes."


def test_badges_follow_thresholds():
    assert generate_badges(_profile()) == []
    assert generate_badges(_profile(streak=90, level=30, xp=5000)) == [
        "7-Day Warrior", "30-Day Champion", "90-Day Legend",
        "Level 10 Master", "Level 20 Expert", "Level 30 Hero",
        "XP Master", "XP Legend",
    ]


def test_special_effects_for_long_streaks():
    assert generate_theme_personalization(_profile(streak=29)).special_effects is None
    assert generate_theme_personalization(_profile(streak=30)).special_effects == {"glow": True, "animation": "subtle"}


def test_malformed_preferences_fall_back_to_default():
    theme = generate_theme_personalization(_profile(preferences={"quizAnswers": "not-an-object"}))
    assert theme == DEFAULT_THEME
