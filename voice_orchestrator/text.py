"""
Reply text handling for speech.

Normalizes generated text for synthesis, drops leaked protocol fragments and
splits an accumulating reply into speakable units.
"""

import re
from typing import List, Optional

import structlog

logger = structlog.get_logger()


# =============================================================================
# Normalization
# =============================================================================

_CODE_FENCE = re.compile(r"```[\s\S]*?(```|$)")
_INLINE_CODE = re.compile(r"`([^`]*)`")
_IMAGE = re.compile(r"!\[([^\]]*)\]\([^)]*\)")
_LINK = re.compile(r"\[([^\]]+)\]\([^)]*\)")
_HEADER = re.compile(r"^\s{0,3}#{1,6}\s*", re.MULTILINE)
_BULLET = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+", re.MULTILINE)
_STAR_EMPHASIS = re.compile(r"(\*\*|\*|~~)(?=\S)(.+?)(?<=\S)\1")
# Underscores inside a word (snake_case) are not emphasis
_UNDERSCORE_EMPHASIS = re.compile(r"(?<!\w)(__|_)(?=\S)(.+?)(?<=\S)\1(?!\w)")
_STRAY_MARKERS = re.compile(r"[*#`~]+")
_EMOJI = re.compile(
    "["
    "\U0001F300-\U0001FAFF"
    "\U00002600-\U000027BF"
    "\U0001F000-\U0001F2FF"
    "\U0000FE0F"
    "\U0000200D"
    "]+"
)
_WHITESPACE = re.compile(r"\s+")


def normalize_for_speech(text: str) -> str:
    """
    Strip markdown and emoji and collapse whitespace.

    The result is what a listener should hear; it is also the text the
    speakable units of a reply are cut from.
    """
    if not text:
        return ""
    text = _CODE_FENCE.sub(" ", text)
    text = _INLINE_CODE.sub(r"\1", text)
    text = _IMAGE.sub(r"\1", text)
    text = _LINK.sub(r"\1", text)
    text = _HEADER.sub("", text)
    text = _BULLET.sub("", text)
    text = _STAR_EMPHASIS.sub(r"\2", text)
    text = _UNDERSCORE_EMPHASIS.sub(r"\2", text)
    text = _STRAY_MARKERS.sub("", text)
    text = _EMOJI.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def is_raw_streaming_json(chunk: str) -> bool:
    """True if a chunk looks like leaked stream framing rather than display text."""
    if not chunk:
        return False
    stripped = chunk.strip()
    return (
        '"content_block_delta"' in stripped
        or '"type":"' in stripped
        or stripped.startswith("data:")
        or stripped.startswith('{"delta":')
    )


# =============================================================================
# Speakable units
# =============================================================================

# Sentence end: terminal punctuation, optional closing quote/bracket/marker, then space
_BOUNDARY = re.compile(r"[.!?…]+[\"')\]”’*_~]*(?=\s)")

# Words whose trailing period is not a sentence end
_ABBREVIATION = re.compile(
    r"(?:^|[\s(*_])(?:mr|mrs|ms|dr|prof|sr|jr|st|vs|e\.g|i\.e|[a-z])\.[*_~]*$",
    re.IGNORECASE,
)

# Link text or target still waiting for its closing bracket
_OPEN_LINK = re.compile(r"\[[^\]]*$|\]\([^)]*$")
# Emphasis opener with no closer yet
_OPEN_EMPHASIS = re.compile(r"\*+(?=\S)|~~(?=\S)|(?<!\w)_+(?=\S)")

# Placed before a segment that starts mid-line so line-anchored rules skip it
_MID_LINE = "\x00"


def has_open_markup(text: str) -> bool:
    """True if ``text`` has a code span, link or emphasis that is not closed yet."""
    if text.count("```") % 2:
        return True
    text = _CODE_FENCE.sub(" ", text)
    if text.count("`") % 2:
        return True
    text = _INLINE_CODE.sub(r"\1", text)
    text = _IMAGE.sub(r"\1", text)
    text = _LINK.sub(r"\1", text)
    if _OPEN_LINK.search(text):
        return True
    text = _HEADER.sub("", text)
    text = _BULLET.sub("", text)
    text = _STAR_EMPHASIS.sub(r"\2", text)
    text = _UNDERSCORE_EMPHASIS.sub(r"\2", text)
    return bool(_OPEN_EMPHASIS.search(text))


class SpeakableUnitScanner:
    """
    Accumulates a streamed reply and yields speakable units in order.

    A unit ends at a sentence boundary once it is at least ``min_chars``
    long, or is cut at the last space before ``max_chars`` when no boundary
    shows up. Cuts are made in the raw text and never inside open markup, so
    a marker that closes in a later chunk cannot shift what was already
    spoken. Units are trimmed, so joining them with single spaces gives the
    normalized reply.
    """

    def __init__(self, min_chars: int = 30, max_chars: int = 220):
        self.min_chars = min_chars
        self.max_chars = max_chars
        self._raw = ""
        self._offset = 0  # Raw characters already handed out
        self._dropped: List[str] = []
        self.logger = logger.bind(component="unit_scanner")

    @property
    def raw_text(self) -> str:
        """The reply as streamed, without dropped fragments."""
        return self._raw

    @property
    def text(self) -> str:
        return normalize_for_speech(self._raw)

    @property
    def spoken_index(self) -> int:
        return self._offset

    @property
    def dropped_fragments(self) -> List[str]:
        return list(self._dropped)

    def append(self, chunk: str) -> List[str]:
        """Add a streamed chunk and return any units that became speakable."""
        if is_raw_streaming_json(chunk):
            self.logger.debug("Dropping raw stream fragment", chunk=chunk[:80])
            self._dropped.append(chunk)
            return []
        self._raw += chunk
        return self._scan(final=False)

    def finish(self, final_text: Optional[str] = None) -> List[str]:
        """
        Flush the remaining unspoken text.

        ``final_text`` is the complete reply reported by the backend. Only the
        part that extends the streamed text is taken, through the same guard
        as streamed chunks; a final text that disagrees with the stream (for
        example because it still holds a dropped fragment) is ignored.
        """
        units: List[str] = []
        if final_text:
            if final_text.startswith(self._raw):
                rest = final_text[len(self._raw):]
                if rest:
                    units = self.append(rest)
            else:
                self.logger.debug(
                    "Ignoring final text that differs from stream",
                    streamed_chars=len(self._raw),
                    final_chars=len(final_text),
                )
        return units + self._scan(final=True)

    def reset(self) -> None:
        self._raw = ""
        self._offset = 0
        self._dropped = []

    def _normalize_segment(self, start: int, end: int) -> str:
        segment = self._raw[start:end]
        if start > 0 and self._raw[start - 1] != "\n":
            return normalize_for_speech(_MID_LINE + segment)[1:].strip()
        return normalize_for_speech(segment)

    def _scan(self, final: bool) -> List[str]:
        units: List[str] = []
        while True:
            start = self._offset
            if not self._raw[start:].strip():
                if final:
                    self._offset = len(self._raw)
                break

            end = self._find_unit_end(start)
            if end is None:
                if not final:
                    break
                end = len(self._raw)

            unit = self._normalize_segment(start, end)
            self._offset = end
            # Consume the separating space so the next unit starts on a word
            if self._raw[end:end + 1].isspace():
                self._offset += 1
            if unit:
                units.append(unit)
        return units

    def _find_unit_end(self, start: int) -> Optional[int]:
        pending = self._raw[start:]
        for match in _BOUNDARY.finditer(pending):
            end = match.end()
            if _ABBREVIATION.search(pending[:end]):
                continue
            if has_open_markup(pending[:end]):
                continue
            if len(self._normalize_segment(start, start + end)) >= self.min_chars:
                return start + end

        if len(self._normalize_segment(start, len(self._raw))) >= self.max_chars:
            return self._find_cut(start)
        return None

    def _find_cut(self, start: int) -> Optional[int]:
        pending = self._raw[start:]
        spaces = [m.start() for m in re.finditer(r"\s", pending) if m.start() > 0]
        for cut in reversed(spaces):
            if len(self._normalize_segment(start, start + cut)) > self.max_chars:
                continue
            if not has_open_markup(pending[:cut]):
                return start + cut
        if not spaces and not has_open_markup(pending[:self.max_chars]):
            return start + self.max_chars
        return None
