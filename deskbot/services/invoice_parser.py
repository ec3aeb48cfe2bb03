"""Extract invoice request fields from free-text fragments.

Nothing is guessed: a field that cannot be read with confidence is set to
``NOT_PROVIDED``.
"""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from deskbot.services.cuit import CUIT_PATTERN, clean_cuit, find_cuit, format_cuit, validate_cuit
from deskbot.services.text_matching import normalize_for_matching

NOT_PROVIDED = "NO INFORMA"

INVOICE_FIELDS = ("cuit_emisor", "concepto", "importe_total", "fecha_operacion", "receptor")

FIELD_LABELS = {
    "cuit_emisor": "CUIT emisor",
    "concepto": "Concepto",
    "importe_total": "Importe total",
    "fecha_operacion": "Fecha de operación",
    "receptor": "Receptor",
}

# Normalized label -> field. Longer labels first so "cuit receptor" wins over "cuit".
_LABEL_ALIASES = (
    ("cuit receptor", "receptor"),
    ("dni receptor", "receptor"),
    ("datos del receptor", "receptor"),
    ("receptor", "receptor"),
    ("a nombre de", "receptor"),
    ("cliente", "receptor"),
    ("cuit emisor", "cuit_emisor"),
    ("mi cuit", "cuit_emisor"),
    ("cuit", "cuit_emisor"),
    ("concepto", "concepto"),
    ("descripcion", "concepto"),
    ("detalle", "concepto"),
    ("importe total", "importe_total"),
    ("importe", "importe_total"),
    ("monto", "importe_total"),
    ("total", "importe_total"),
    ("fecha de la operacion", "fecha_operacion"),
    ("fecha de operacion", "fecha_operacion"),
    ("fecha", "fecha_operacion"),
)

_LABELED_LINE = re.compile(r"^\s*([^:=\n]{2,30}?)\s*[:=]\s*(.+?)\s*$")
AMOUNT_PATTERN = re.compile(
    r"(?:\$\s*\d[\d.,]*|\d[\d.,]*\s*(?:pesos|ars)\b|\bars\s*\d[\d.,]*)",
    re.IGNORECASE,
)
DATE_PATTERN = re.compile(r"(?<!\d)(\d{1,2})[/.-](\d{1,2})[/.-](\d{2}|\d{4})(?!\d)")
_DNI_PATTERN = re.compile(r"^\d{1,2}\.?\d{3}\.?\d{3}$")


def _label_to_field(label: str) -> Optional[str]:
    normalized = normalize_for_matching(label)
    for alias, field in _LABEL_ALIASES:
        if normalized == alias:
            return field
    return None


def _split_lines(fragments: Iterable[str]) -> list[str]:
    lines = []
    for fragment in fragments:
        for line in (fragment or "").splitlines():
            line = line.strip()
            if line:
                lines.append(line)
    return lines


def normalize_amount(value: Optional[str]) -> Optional[str]:
    """``"$ 1.500,00" -> "1500.00"``; ``None`` when no amount can be read."""
    raw = re.sub(r"[^\d.,]", "", value or "")
    if not raw or not any(ch.isdigit() for ch in raw):
        return None

    if "," in raw and "." in raw:
        decimal_sep = "," if raw.rfind(",") > raw.rfind(".") else "."
        thousands_sep = "." if decimal_sep == "," else ","
        raw = raw.replace(thousands_sep, "").replace(decimal_sep, ".")
    elif "," in raw:
        raw = raw.replace(",", "") if raw.count(",") > 1 else raw.replace(",", ".")
    elif "." in raw:
        # A single dot followed by exactly three digits separates thousands.
        if raw.count(".") > 1 or re.fullmatch(r"\d{1,3}\.\d{3}", raw):
            raw = raw.replace(".", "")

    try:
        amount = Decimal(raw.strip("."))
    except InvalidOperation:
        return None
    return f"{amount.quantize(Decimal('0.01'))}"


def normalize_date(value: Optional[str]) -> Optional[str]:
    match = DATE_PATTERN.search(value or "")
    if not match:
        return None
    day, month, year = (int(part) for part in match.groups())
    if year < 100:
        year += 2000
    try:
        parsed = date(year, month, day)
    except ValueError:
        return None
    return parsed.strftime("%d/%m/%Y")


def _normalize_receptor(value: str) -> Optional[str]:
    value = value.strip()
    if not value:
        return None
    digits = clean_cuit(value)
    if len(digits) == 11 and re.fullmatch(r"[\d\s.-]+", value):
        return format_cuit(digits)
    return value


def strip_field_patterns(text: str) -> str:
    """Remove id, amount and date substrings so they do not bleed into the description."""
    cleaned = CUIT_PATTERN.sub(" ", text or "")
    cleaned = AMOUNT_PATTERN.sub(" ", cleaned)
    cleaned = DATE_PATTERN.sub(" ", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned).strip(" ,;:-")
    return cleaned


def parse_invoice_fields(fragments: Iterable[str], known_cuit: Optional[str] = None) -> dict[str, str]:
    """Build the five invoice fields from what the user typed."""
    labeled: dict[str, str] = {}
    unlabeled: list[str] = []

    for line in _split_lines(fragments):
        match = _LABELED_LINE.match(line)
        field = _label_to_field(match.group(1)) if match else None
        if field and match.group(2).strip():
            labeled.setdefault(field, match.group(2).strip())
        else:
            unlabeled.append(line)

    fields = {name: NOT_PROVIDED for name in INVOICE_FIELDS}

    if known_cuit and clean_cuit(known_cuit):
        fields["cuit_emisor"] = clean_cuit(known_cuit)
    elif "cuit_emisor" in labeled and len(clean_cuit(labeled["cuit_emisor"])) == 11:
        fields["cuit_emisor"] = clean_cuit(labeled["cuit_emisor"])
    else:
        for line in unlabeled:
            found = find_cuit(line)
            if found:
                fields["cuit_emisor"] = found
                break

    amount = normalize_amount(labeled["importe_total"]) if "importe_total" in labeled else None
    if amount is None:
        for line in unlabeled:
            match = AMOUNT_PATTERN.search(line)
            if match:
                amount = normalize_amount(match.group(0))
                if amount is not None:
                    break
    if amount is not None:
        fields["importe_total"] = amount

    operation_date = normalize_date(labeled.get("fecha_operacion"))
    if operation_date is None:
        for line in unlabeled:
            operation_date = normalize_date(line)
            if operation_date:
                break
    if operation_date is not None:
        fields["fecha_operacion"] = operation_date

    if "receptor" in labeled:
        receptor = _normalize_receptor(labeled["receptor"])
        if receptor:
            fields["receptor"] = receptor

    concept = strip_field_patterns(labeled.get("concepto", ""))
    if not concept and unlabeled:
        concept = strip_field_patterns(max(unlabeled, key=len))
    if len(re.sub(r"[^\w]", "", concept)) >= 3:
        fields["concepto"] = concept

    return fields


def validate_field_value(field: str, value: Optional[str]) -> Optional[str]:
    """Normalized value for a retyped field, or ``None`` when it is not acceptable."""
    value = (value or "").strip()
    if not value:
        return None

    if field == "cuit_emisor":
        return clean_cuit(value) if validate_cuit(value) else None
    if field == "importe_total":
        amount = normalize_amount(value)
        if amount is None or Decimal(amount) <= 0:
            return None
        return amount
    if field == "fecha_operacion":
        return normalize_date(value)
    if field == "receptor":
        if re.fullmatch(r"[\d\s.-]+", value):
            digits = clean_cuit(value)
            if len(digits) == 11:
                return format_cuit(digits) if validate_cuit(digits) else None
            return value if _DNI_PATTERN.match(value.replace(" ", "")) else None
        return value if len(value) >= 3 else None
    if field == "concepto":
        concept = strip_field_patterns(value)
        return concept if len(concept) >= 3 else None
    return None


def format_invoice_summary(fields: dict[str, str]) -> str:
    lines = []
    for name in INVOICE_FIELDS:
        value = fields.get(name) or NOT_PROVIDED
        if name == "cuit_emisor" and value != NOT_PROVIDED:
            value = format_cuit(value)
        if name == "importe_total" and value != NOT_PROVIDED:
            value = f"${value}"
        lines.append(f"• {FIELD_LABELS[name]}: {value}")
    return "\n".join(lines)
