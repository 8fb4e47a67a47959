"""
Extracción de la referencia de transacción desde un payload escaneado.

Los QR que llegan a la puerta no tienen un formato único: algunos llevan el
JSON completo del ticket, otros un deep link y otros solo el código. Cada
formato es un parser independiente; se prueban en orden y el primero que
produce una referencia gana:

    1. JSON con `tx_ref`, `reference` o `txRef`
    2. URL absoluta con esas mismas claves en el query string
    3. el texto crudo, sin espacios alrededor

Un JSON que es un objeto pero no trae ninguna de esas claves es un payload
mal formado: no se reinterpreta como código crudo.
"""
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Union
from urllib.parse import parse_qs, urlsplit
import json

REFERENCE_ALIASES = ("tx_ref", "reference", "txRef")


@dataclass(frozen=True)
class Parsed:
    reference: str
    source: str  # json, url o raw


@dataclass(frozen=True)
class NoMatch:
    """El parser no reconoce el formato; se prueba el siguiente"""


@dataclass(frozen=True)
class Unusable:
    """El formato se reconoció pero no trae referencia; detiene la cadena"""
    reason: str


@dataclass(frozen=True)
class MalformedPayload:
    raw_payload: str
    reason: str


ParseAttempt = Union[Parsed, NoMatch, Unusable]
ExtractionResult = Union[Parsed, MalformedPayload]

NO_MATCH = NoMatch()


def _clean(value) -> str:
    if isinstance(value, bool) or value is None:
        return ""
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value.strip()
    return ""


def parse_json(raw: str) -> ParseAttempt:
    try:
        data = json.loads(raw)
    except ValueError:
        return NO_MATCH

    if not isinstance(data, dict):
        # "12345" o "\"abc\"" son JSON válido pero no un payload estructurado
        return NO_MATCH

    for alias in REFERENCE_ALIASES:
        reference = _clean(data.get(alias))
        if reference:
            return Parsed(reference, "json")
    return Unusable("JSON sin referencia de transacción")


def parse_url(raw: str) -> ParseAttempt:
    candidate = raw.strip()
    try:
        parts = urlsplit(candidate)
    except ValueError:
        return NO_MATCH

    if not parts.scheme or not parts.netloc:
        return NO_MATCH

    params = parse_qs(parts.query)
    for alias in REFERENCE_ALIASES:
        for value in params.get(alias, []):
            reference = value.strip()
            if reference:
                return Parsed(reference, "url")
    return NO_MATCH


def parse_raw(raw: str) -> ParseAttempt:
    reference = raw.strip()
    if not reference:
        return Unusable("Payload vacío")
    return Parsed(reference, "raw")


PARSERS: Tuple[Callable[[str], ParseAttempt], ...] = (parse_json, parse_url, parse_raw)


def extract_reference(raw_payload: Optional[str]) -> ExtractionResult:
    """Normalizar un payload escaneado a una referencia de transacción"""
    if not isinstance(raw_payload, str):
        return MalformedPayload("", "Payload vacío")

    for parser in PARSERS:
        attempt = parser(raw_payload)
        if isinstance(attempt, Parsed):
            return attempt
        if isinstance(attempt, Unusable):
            return MalformedPayload(raw_payload, attempt.reason)

    return MalformedPayload(raw_payload, "No se pudo extraer la referencia de transacción")
