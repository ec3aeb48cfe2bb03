"""Keyword and fuzzy matching for user commands.

Everything here works on ``normalize_for_matching`` output, so callers can
pass raw user text.
"""

import re
import unicodedata
from typing import Iterable, Optional

from rapidfuzz import fuzz

DONE_SYNONYMS = (
    "listo",
    "lista",
    "listos",
    "ya esta",
    "ya",
    "termine",
    "terminado",
    "fin",
    "eso es todo",
    "es todo",
    "enviado",
    "ya envie todo",
    "done",
)
DONE_FUZZY_THRESHOLD = 85

RESET_COMMANDS = ("reset", "/reset", "reiniciar")
MENU_COMMANDS = ("menu", "inicio", "hola", "volver", "start", "empezar")
BACK_COMMANDS = ("atras", "cancelar")

AFFIRMATIVE = ("si", "sí", "dale", "ok", "confirmo", "correcto", "esta bien", "perfecto", "de acuerdo", "todo bien")
NEGATIVE = ("no", "corregir", "modificar", "cambiar", "editar", "esta mal", "hay un error")

_HANDOFF_PHRASES = (
    "hablar con alguien",
    "habla con alguien",
    "habla alguien",
    "hablas con alguien",
    "abla alguien",
    "hablar con alg",
    "hablar con una persona",
    "hablar con un humano",
    "quiero un asesor",
)
_ALGUIEN_VARIANTS = ("alguien", "alguie", "alguen", "algn", "alguin", "alguein", "algun", "algien")
# "hable" (past tense) is deliberately absent.
_VERB_ROOTS = ("hablar", "habla", "hablas", "ablar", "abla")
_CON_VARIANTS = ("con", "cn", "ocn")

_PAYMENT_PHRASES = (
    "honorarios",
    "abonarte",
    "pagarte",
    "biolibre",
    "bio libre",
    "pago servicio",
    "pago de servicios",
    "me mandas el link",
    "mandame el link",
    "asi te pago",
    "link de pago",
    "link para pagar",
    "como pago",
    "donde pago",
    "pagar monotributo",
    "pago monotributo",
    "deuda monotributo",
    "debo monotributo",
    "cuanto debo",
    "cuanto tengo que pagar",
    "quiero pagar",
)

PAYMENT_TYPE_KEYWORDS = {
    "honorarios": ("honorarios", "abonarte", "pagarte", "biolibre", "bio libre"),
    "monotributo": ("monotributo",),
    "deuda_generica": ("pagar", "pago", "deuda", "debo", "adeudo", "vencimiento", "cuota"),
}

_PUNCTUATION = re.compile(r"[^\w\s]+")
_WHITESPACE = re.compile(r"\s+")


def normalize_for_matching(text: Optional[str]) -> str:
    """Casefold, drop accents (keeping ñ) and punctuation, collapse spaces."""
    if not text:
        return ""

    normalized = text.strip().casefold()
    decomposed = unicodedata.normalize("NFD", normalized.replace("ñ", "\0"))
    normalized = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn").replace("\0", "ñ")
    normalized = _PUNCTUATION.sub(" ", normalized).replace("_", " ")
    return _WHITESPACE.sub(" ", normalized).strip()


def _contains_phrase(normalized: str, phrase: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(phrase)}(?!\w)", normalized) is not None


def is_done_command(text: Optional[str]) -> bool:
    normalized = normalize_for_matching(text)
    if not normalized or len(normalized) > 30:
        return False
    if normalized in DONE_SYNONYMS:
        return True
    # "listoo", "lissto", "tremine"
    return any(
        len(synonym) >= 4 and fuzz.ratio(normalized, synonym) >= DONE_FUZZY_THRESHOLD for synonym in DONE_SYNONYMS
    )


def is_handoff_request(text: Optional[str]) -> bool:
    """True when the user asks to talk to a person, typos included."""
    normalized = normalize_for_matching(text)
    if not normalized:
        return False

    if any(phrase in normalized for phrase in _HANDOFF_PHRASES):
        return True

    words = normalized.split()
    has_verb = any(word in _VERB_ROOTS for word in words)
    has_con = any(word in _CON_VARIANTS for word in words)
    has_alguien = any(variant in normalized for variant in _ALGUIEN_VARIANTS)
    return has_verb and has_con and has_alguien


def is_payment_intent(text: Optional[str]) -> bool:
    normalized = normalize_for_matching(text)
    if not normalized:
        return False
    return any(_contains_phrase(normalized, phrase) for phrase in _PAYMENT_PHRASES)


def detect_payment_type(text: Optional[str]) -> str:
    normalized = normalize_for_matching(text)
    for payment_type in ("honorarios", "monotributo"):
        if any(keyword in normalized for keyword in PAYMENT_TYPE_KEYWORDS[payment_type]):
            return payment_type
    return "deuda_generica"


def is_reset_command(text: Optional[str]) -> bool:
    raw = (text or "").strip().casefold()
    return raw in RESET_COMMANDS or normalize_for_matching(text) in RESET_COMMANDS


def is_menu_command(text: Optional[str]) -> bool:
    return normalize_for_matching(text) in MENU_COMMANDS


def is_back_command(text: Optional[str]) -> bool:
    return normalize_for_matching(text) in BACK_COMMANDS


def is_affirmative(text: Optional[str]) -> bool:
    normalized = normalize_for_matching(text)
    return normalized in AFFIRMATIVE or normalized.startswith("si ")


def is_negative(text: Optional[str]) -> bool:
    normalized = normalize_for_matching(text)
    return normalized in NEGATIVE or normalized.startswith("no ")


def match_option(text: Optional[str], options: Iterable[dict]) -> Optional[str]:
    """Return the id of the menu row selected by ``text``.

    A row matches by its id (interactive replies), its position number, or
    one of its ``aliases``.
    """
    raw = (text or "").strip()
    normalized = normalize_for_matching(text)
    if not normalized:
        return None

    options = list(options)
    for option in options:
        if raw == option["id"]:
            return option["id"]

    if normalized.isdigit():
        index = int(normalized) - 1
        if 0 <= index < len(options):
            return options[index]["id"]
        return None

    for option in options:
        candidates = [normalize_for_matching(option.get("title"))]
        candidates.extend(normalize_for_matching(alias) for alias in option.get("aliases", ()))
        if normalized in candidates:
            return option["id"]

    for option in options:
        for alias in option.get("aliases", ()):
            alias_norm = normalize_for_matching(alias)
            if len(alias_norm) >= 4 and _contains_phrase(normalized, alias_norm):
                return option["id"]
    return None
