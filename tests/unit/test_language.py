"""Unit tests for language profile resolution."""

import pytest

from voice_orchestrator.config import Settings
from voice_orchestrator.language import LanguageProfileResolver, base_code


@pytest.fixture
def resolver(settings):
    return LanguageProfileResolver(settings)


@pytest.mark.parametrize(
    "tag,expected",
    [
        ("af-ZA", "af"),
        ("AF", "af"),
        ("zu_ZA", "zu"),
        ("nso-ZA", "nso"),
        ("st", "nso"),
        ("fr-FR", None),
        ("", None),
        (None, None),
    ],
)
def test_base_code(tag, expected):
    assert base_code(tag) == expected


class TestLanguageProfileResolver:
    """Tests for LanguageProfileResolver."""

    def test_default_when_nothing_given(self, resolver):
        profile = resolver.resolve()

        assert profile.tag == "en-ZA"
        assert profile == resolver.default_profile

    def test_detected_language(self, resolver):
        profile = resolver.resolve(detected="af")

        assert profile.tag == "af-ZA"
        assert profile.recognizer_locale == "af-ZA"
        assert profile.synthesis_voice_id == "af-ZA-AdriNeural"
        assert "Afrikaans" in profile.prompt_template

    def test_forced_beats_detected(self, resolver):
        profile = resolver.resolve(forced="zu-ZA", detected="af")
        assert profile.tag == "zu-ZA"

    def test_detected_beats_preferred_and_ui(self, resolver):
        profile = resolver.resolve(detected="xh", preferred="af", ui_locale="zu")
        assert profile.tag == "xh-ZA"

    def test_preferred_beats_ui(self, resolver):
        assert resolver.resolve(preferred="af", ui_locale="zu").tag == "af-ZA"
        assert resolver.resolve(ui_locale="zu").tag == "zu-ZA"

    def test_unsupported_highest_tag_gives_default(self, resolver):
        """Test an unsupported tag is not skipped in favour of a lower one."""
        profile = resolver.resolve(forced="fr-FR", detected="af")
        assert profile.tag == "en-ZA"

    def test_settings_preference_used(self):
        settings = Settings(_env_file=None, preferred_language="af-ZA", ui_locale="zu-ZA")
        resolver = LanguageProfileResolver(settings)

        assert resolver.resolve().tag == "af-ZA"

    def test_unsupported_default_falls_back_to_english(self):
        settings = Settings(_env_file=None, default_language="fr")
        resolver = LanguageProfileResolver(settings)

        assert resolver.default_profile.tag == "en-ZA"

    def test_prompt_names_assistant(self):
        settings = Settings(_env_file=None, assistant_name="Nomsa")
        profile = LanguageProfileResolver(settings).resolve(detected="zu")

        assert "Nomsa" in profile.prompt_template
        assert "isiZulu" in profile.prompt_template

    def test_profiles_listing(self, resolver):
        profiles = resolver.profiles()

        assert set(profiles) == {"en-ZA", "af-ZA", "zu-ZA", "xh-ZA", "nso-ZA"}
        assert all(tag == p.tag for tag, p in profiles.items())
