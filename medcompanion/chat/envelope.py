"""
Message Envelope Codec
======================

Every message body on the chat transport is a small JSON envelope:

    inbound:  {"text": "...", "lang": "hi-IN", "location": {"lat": 12.9, "long": 77.6}}
    outbound: {"lang": "en-US", "text": "..."}

Decoding never raises. A body that is not a JSON envelope (plain text typed
into Slack, a truncated payload) degrades to an envelope carrying the raw
text with no locale and no location.

While the model streams its answer, the transport holds a growing prefix of
the outbound envelope. decode_incremental() pulls the readable text out of
such a prefix so partial JSON syntax is never shown to the user.
"""

import json
import re
from dataclasses import dataclass

SUPPORTED_LOCALES = (
    "en-US", "ta-IN", "hi-IN", "es-ES", "fr-FR", "de-DE", "it-IT",
    "pt-PT", "ru-RU", "ja-JP", "ko-KR", "zh-CN", "ar-SA", "bn-IN",
    "te-IN", "mr-IN", "ml-IN", "kn-IN", "gu-IN",
)

DEFAULT_LOCALE = "en-US"

# Shown when a turn fails; keyed by locale
FALLBACK_MESSAGES = {
    "en-US": "I apologize, but I encountered an error. Please try again.",
    "es-ES": "Lo siento, pero encontré un error. Por favor, inténtalo de nuevo.",
    "fr-FR": "Je suis désolé, mais j'ai rencontré une erreur. Veuillez réessayer.",
    "de-DE": "Es tut mir leid, aber es ist ein Fehler aufgetreten. Bitte versuchen Sie es erneut.",
    "it-IT": "Mi dispiace, ma si è verificato un errore. Per favore riprova.",
    "pt-PT": "Peço desculpa, mas ocorreu um erro. Por favor, tente novamente.",
    "hi-IN": "क्षमा करें, एक त्रुटि हुई। कृपया पुनः प्रयास करें।",
    "ta-IN": "மன்னிக்கவும், ஒரு பிழை ஏற்பட்டது. மீண்டும் முயற்சிக்கவும்.",
}

_TEXT_FIELD = re.compile(r'"text"\s*:\s*"((?:[^"\\]|\\.)*)', re.DOTALL)
_LANG_FIELD = re.compile(r'"lang"\s*:\s*"([^"\\]*)"')
_DANGLING_UNICODE = re.compile(r"\\u[0-9a-fA-F]{0,3}$")
_SIMPLE_ESCAPES = {"n": "\n", "t": "\t", '"': '"', "\\": "\\"}


@dataclass(frozen=True)
class Location:
    """A coordinate pair sent by the client. Never forwarded to the model."""
    lat: float
    long: float


@dataclass(frozen=True)
class Envelope:
    """
    A decoded inbound message.

    Attributes:
        text: What the user wrote
        locale: Optional locale tag (e.g. "hi-IN")
        location: Optional coordinates
    """
    text: str
    locale: str | None = None
    location: Location | None = None


@dataclass(frozen=True)
class PartialEnvelope:
    """Result of decoding a possibly truncated outbound envelope."""
    text: str
    locale: str | None
    complete: bool


def normalize_locale(value: object) -> str | None:
    """
    Map a locale tag onto the supported set.

    Exact matches win (case-insensitive); a bare language ("hi") or an
    unsupported region ("en-GB") maps to the first supported locale with the
    same language. Anything else returns None.
    """
    if not isinstance(value, str) or not value.strip():
        return None

    tag = value.strip().replace("_", "-").lower()
    for locale in SUPPORTED_LOCALES:
        if locale.lower() == tag:
            return locale

    language = tag.split("-", 1)[0]
    for locale in SUPPORTED_LOCALES:
        if locale.split("-", 1)[0].lower() == language:
            return locale
    return None


def _parse_location(value: object) -> Location | None:
    if not isinstance(value, dict):
        return None
    lat = value.get("lat")
    long = value.get("long")
    for coord in (lat, long):
        if isinstance(coord, bool) or not isinstance(coord, (int, float)):
            return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= long <= 180.0):
        return None
    return Location(lat=float(lat), long=float(long))


def decode(raw: str | None) -> Envelope:
    """
    Decode a transport message body into an Envelope.

    Never raises: anything that is not an object with a string "text" field
    becomes Envelope(text=raw).
    """
    raw = raw or ""
    try:
        parsed = json.loads(raw)
    except (ValueError, TypeError):
        return Envelope(text=raw)

    if not isinstance(parsed, dict) or not isinstance(parsed.get("text"), str):
        return Envelope(text=raw)

    return Envelope(
        text=parsed["text"],
        locale=normalize_locale(parsed.get("lang")),
        location=_parse_location(parsed.get("location")),
    )


def _unescape(fragment: str) -> str:
    """Resolve JSON escapes in a string body that ends on an escape boundary."""
    fragment = _DANGLING_UNICODE.sub("", fragment)
    try:
        return json.loads(f'"{fragment}"', strict=False)
    except ValueError:
        return re.sub(
            r"\\(.)",
            lambda m: _SIMPLE_ESCAPES.get(m.group(1), m.group(0)),
            fragment,
        )


def decode_incremental(raw_prefix: str | None) -> PartialEnvelope:
    """
    Extract readable text from a possibly incomplete envelope.

    1. A complete envelope parses normally (complete=True).
    2. Otherwise the "text" value is taken up to the last complete escape
       and unescaped (complete=False).
    3. A fragment that starts like an object but has no readable text yet
       yields empty text (complete=False).
    4. Plain non-JSON text is returned as-is (complete=True).
    """
    if not raw_prefix:
        return PartialEnvelope(text="", locale=None, complete=False)

    try:
        parsed = json.loads(raw_prefix)
        if isinstance(parsed, dict) and isinstance(parsed.get("text"), str):
            return PartialEnvelope(
                text=parsed["text"],
                locale=normalize_locale(parsed.get("lang")),
                complete=True,
            )
    except ValueError:
        pass

    lang_match = _LANG_FIELD.search(raw_prefix)
    locale = normalize_locale(lang_match.group(1)) if lang_match else None

    text_match = _TEXT_FIELD.search(raw_prefix)
    if text_match:
        return PartialEnvelope(
            text=_unescape(text_match.group(1)),
            locale=locale,
            complete=False,
        )

    if raw_prefix.lstrip().startswith("{"):
        return PartialEnvelope(text="", locale=locale, complete=False)

    return PartialEnvelope(text=raw_prefix, locale=None, complete=True)


def encode_response(text: str, locale: str | None = None) -> str:
    """Serialize an outbound envelope: {"lang": ..., "text": ...}."""
    return json.dumps(
        {"lang": normalize_locale(locale) or DEFAULT_LOCALE, "text": text},
        ensure_ascii=False,
    )


def fallback_envelope(locale: str | None = None) -> str:
    """The fixed apology shown when a turn fails, in the user's locale if known."""
    resolved = normalize_locale(locale) or DEFAULT_LOCALE
    if resolved not in FALLBACK_MESSAGES:
        resolved = DEFAULT_LOCALE
    return encode_response(FALLBACK_MESSAGES[resolved], resolved)


def ensure_response_envelope(raw: str, locale: str | None = None) -> str:
    """
    Make sure the final answer is a valid outbound envelope.

    Models occasionally wrap the JSON in prose or answer in plain text; the
    readable text is recovered and re-encoded so the transport only ever
    stores {"lang", "text"}.
    """
    stripped = raw.strip()
    try:
        parsed = json.loads(stripped)
        if (
            isinstance(parsed, dict)
            and set(parsed) == {"lang", "text"}
            and isinstance(parsed["text"], str)
            and parsed["lang"] in SUPPORTED_LOCALES
        ):
            return stripped
    except ValueError:
        pass

    start, end = stripped.find("{"), stripped.rfind("}")
    if 0 <= start < end:
        inner = decode_incremental(stripped[start:end + 1])
        if inner.text:
            return encode_response(inner.text, inner.locale or locale)

    partial = decode_incremental(stripped)
    return encode_response(partial.text, partial.locale or locale)
