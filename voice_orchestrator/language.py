"""Language profile resolution."""

from dataclasses import dataclass
from typing import Dict, Optional

import structlog

from .config import Settings, get_settings
from .models import LanguageProfile

logger = structlog.get_logger()


PROMPT_TEMPLATE = (
    "You are {assistant}, an AI assistant. Respond in {language} ({tag}) unless "
    "the user explicitly requests a different language. Keep responses concise "
    "and clear for voice interaction."
)


@dataclass(frozen=True)
class LanguageEntry:
    """Static lookup row for a supported language."""

    tag: str
    name: str
    synthesis_voice_id: str


SUPPORTED_LANGUAGES: Dict[str, LanguageEntry] = {
    "en": LanguageEntry("en-ZA", "English", "en-ZA-LeahNeural"),
    "af": LanguageEntry("af-ZA", "Afrikaans", "af-ZA-AdriNeural"),
    "zu": LanguageEntry("zu-ZA", "isiZulu", "zu-ZA-ThandoNeural"),
    "xh": LanguageEntry("xh-ZA", "isiXhosa", "xh-ZA-Online"),
    "nso": LanguageEntry("nso-ZA", "Sepedi", "nso-ZA-Online"),
}

# Prefixes that map onto a supported base code
LANGUAGE_ALIASES: Dict[str, str] = {
    "st": "nso",
    "so": "nso",
}


def base_code(tag: Optional[str]) -> Optional[str]:
    """Map a locale tag such as ``af-ZA`` or ``AF`` to a supported base code."""
    if not tag:
        return None
    primary = str(tag).strip().lower().replace("_", "-").split("-")[0]
    if not primary:
        return None
    primary = LANGUAGE_ALIASES.get(primary, primary)
    return primary if primary in SUPPORTED_LANGUAGES else None


class LanguageProfileResolver:
    """
    Pure mapping from language inputs to a LanguageProfile.

    Precedence, highest first: forced language, language detected on the most
    recent turn, stored user preference, host UI locale, default. The
    highest-precedence tag wins even when it is unsupported, in which case
    the default profile is returned.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self._profiles: Dict[str, LanguageProfile] = {
            code: self._build(entry) for code, entry in SUPPORTED_LANGUAGES.items()
        }
        default = base_code(self.settings.default_language) or "en"
        self._default = self._profiles[default]

    def _build(self, entry: LanguageEntry) -> LanguageProfile:
        return LanguageProfile(
            tag=entry.tag,
            recognizer_locale=entry.tag,
            synthesis_voice_id=entry.synthesis_voice_id,
            prompt_template=PROMPT_TEMPLATE.format(
                assistant=self.settings.assistant_name,
                language=entry.name,
                tag=entry.tag,
            ),
            display_name=entry.name,
        )

    @property
    def default_profile(self) -> LanguageProfile:
        return self._default

    def resolve(
        self,
        forced: Optional[str] = None,
        detected: Optional[str] = None,
        preferred: Optional[str] = None,
        ui_locale: Optional[str] = None,
    ) -> LanguageProfile:
        """Resolve the profile for the first supported tag by precedence."""
        if preferred is None:
            preferred = self.settings.preferred_language
        if ui_locale is None:
            ui_locale = self.settings.ui_locale

        tag = next((t for t in (forced, detected, preferred, ui_locale) if t), None)
        code = base_code(tag)
        if code is None:
            if tag:
                logger.debug("Unsupported language tag, using default", tag=tag)
            return self._default

        return self._profiles[code]

    def profiles(self) -> Dict[str, LanguageProfile]:
        """All resolvable profiles keyed by canonical tag."""
        return {profile.tag: profile for profile in self._profiles.values()}
