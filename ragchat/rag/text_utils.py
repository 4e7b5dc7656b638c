"""
Text helpers shared by the keyword gate and the lexical groundedness fallback.

Normalisation folds case, strips diacritics and punctuation so that
"Qué horario tiene la oficina?" and "que horario tiene la oficina" compare equal.
"""

import re
import unicodedata
from typing import FrozenSet, Iterable, List, Set

# Common Spanish stopwords (unaccented; tokens are normalised before lookup)
_STOPWORDS_RAW = [
    "a", "aca", "ahi", "al", "algo", "algunas", "algunos", "alla", "alli",
    "ambos", "ante", "antes", "aquel", "aquella", "aquellas", "aquellos",
    "aqui", "arriba", "asi", "atras", "aun", "aunque", "bajo", "bien",
    "cabe", "cada", "casi", "cierto", "como", "con", "conmigo", "conseguir",
    "consigo", "contigo", "contra", "cual", "cuales", "cualquier", "cuando",
    "de", "debajo", "dejar", "del", "demas", "demasiado", "dentro", "desde",
    "donde", "dos", "el", "ella", "ellas", "ellos", "en", "entre", "era",
    "erais", "eramos", "eran", "eres", "es", "esa", "esas", "ese", "eso",
    "esos", "esta", "estaba", "estado", "estais", "estamos", "estan",
    "estar", "este", "esto", "estos", "estoy", "fin", "fue", "fueron",
    "fui", "fuimos", "gueno", "ha", "hace", "haces", "haceis", "hacemos",
    "hacen", "hacer", "hacia", "hago", "incluso", "jamas", "junto", "la",
    "largo", "las", "lo", "los", "mientras", "mio", "mis", "misma", "mismas",
    "mismo", "mismos", "modo", "mucho", "muy", "nos", "nosotros", "nuestra",
    "nuestras", "nuestro", "nuestros", "nunca", "otra", "otras", "otro",
    "otros", "para", "pero", "por", "porque", "primero", "puede", "pueden",
    "puedo", "pues", "que", "quien", "quienes", "quizas", "se", "segun",
    "ser", "si", "siendo", "sin", "sobre", "solamente", "solo", "somos",
    "soy", "su", "sus", "tal", "tambien", "tener", "tengo", "tiempo",
    "tiene", "tienen", "toda", "todas", "todo", "todos", "tras", "un",
    "una", "uno", "unos", "usted", "ustedes", "va", "vais", "vamos", "van",
    "varias", "varios", "verdad", "vosotras", "vosotros", "voy", "yo",
]

SPANISH_STOPWORDS: FrozenSet[str] = frozenset(_STOPWORDS_RAW)

_PUNCTUATION_RE = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE_RE = re.compile(r"\s+")


def strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_text(text: str) -> str:
    """Casefold, strip diacritics and punctuation, and collapse whitespace."""
    text = strip_diacritics(text.casefold())
    text = _PUNCTUATION_RE.sub(" ", text).replace("_", " ")
    return _WHITESPACE_RE.sub(" ", text).strip()


def tokenize(text: str) -> List[str]:
    normalized = normalize_text(text)
    return normalized.split() if normalized else []


def content_tokens(text: str, min_length: int = 3, stopwords: Iterable[str] = SPANISH_STOPWORDS) -> Set[str]:
    """Token set without stopwords and without tokens shorter than ``min_length``.

    Args:
        text: Raw text.
        min_length: Shortest token kept (the lexical fallback drops length <= 2).
        stopwords: Normalised stopword list.

    Returns:
        Set of normalised content tokens.
    """
    stop = stopwords if isinstance(stopwords, (set, frozenset)) else set(stopwords)
    return {tok for tok in tokenize(text) if len(tok) >= min_length and tok not in stop}


def extract_keywords(query: str) -> List[str]:
    """Content keywords of a query, in order of appearance, longer than three letters."""
    seen = []
    for tok in tokenize(query):
        if len(tok) > 3 and tok not in SPANISH_STOPWORDS and tok not in seen:
            seen.append(tok)
    return seen


def contains_any_keyword(text: str, keywords: Iterable[str]) -> bool:
    haystack = normalize_text(text)
    return any(kw in haystack for kw in keywords)


def jaccard_similarity(a: Set[str], b: Set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)
