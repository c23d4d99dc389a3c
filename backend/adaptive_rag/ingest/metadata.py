"""Temporal and financial metadata extraction for chunk text."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Callable, Iterable, Pattern

from adaptive_rag.models.entities import (
    ChunkMetadata,
    FinancialEntity,
    FinancialType,
    SectionInfo,
    SectionType,
    SemanticType,
    TemporalEntity,
    TemporalType,
)

_QUARTER_WORDS = {"first": 1, "second": 2, "third": 3, "fourth": 4}
_MONTHS = (
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
)
_MULTIPLIERS = {
    "b": 1_000_000_000, "billion": 1_000_000_000,
    "m": 1_000_000, "million": 1_000_000,
    "k": 1_000, "thousand": 1_000,
}

_QUARTER_RE = re.compile(
    r"\b(?:Q([1-4])|(first|second|third|fourth)\s+quarter)(?:\s+of)?,?\s+(?:FY\s?)?((?:19|20)\d{2})\b",
    re.IGNORECASE,
)
_FISCAL_YEAR_RE = re.compile(r"\b(?:fiscal\s+year|FY)\s?'?((?:19|20)\d{2}|\d{2})\b", re.IGNORECASE)
_MONTH_RE = re.compile(r"\b(" + "|".join(_MONTHS) + r")\s+(?:\d{1,2},\s+)?((?:19|20)\d{2})\b", re.IGNORECASE)
_DATE_RANGE_RE = re.compile(
    r"\b(\d{1,2}/\d{1,2}/\d{2,4})\s*(?:-|–|—|to|through)\s*(\d{1,2}/\d{1,2}/\d{2,4})\b", re.IGNORECASE
)
_SPECIFIC_DATE_RE = re.compile(r"\b(\d{1,2}/\d{1,2}/\d{4}|\d{4}-\d{2}-\d{2})\b")
_YEAR_RE = re.compile(r"\b((?:19|20)\d{2})\b")

_CURRENCY_RE = re.compile(
    r"\$\s?(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)\s?(billion|million|thousand|[BMK])?\b"
)
_PERCENT_RE = re.compile(r"(?<![\d.])([+-]?\d{1,3}(?:\.\d{1,2})?)\s?(?:%|percent\b)", re.IGNORECASE)
_METRIC_RE = re.compile(
    r"\b(revenue|profit|income|loss|growth|increase|decrease|decline|margin|earnings|ebitda)\b"
    r"[^.\n\d$]{0,60}?\$?(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)\s?([BMK%])?",
    re.IGNORECASE,
)

_FINANCIAL_STATEMENT_RE = (
    re.compile(r"\b(?:income statement|balance sheet|cash flow statement|statement of operations)\b", re.I),
    re.compile(r"\b(?:total (?:revenue|assets|liabilities)|net income|operating income|gross profit)\b", re.I),
)
_TABLE_RE = (re.compile(r"^\s*\|.*\|\s*$", re.M), re.compile(r"\t.+\t"), re.compile(r"^\s*[-|: ]{3,}\s*$", re.M))
_HEADER_RE = re.compile(r"^\s*(#{1,6})\s+(.+)$", re.M)
_ALLCAPS_HEADER_RE = re.compile(r"^[ \t]*([A-Z][A-Z0-9 &]{3,})[ \t]*$", re.M)

_NUMERIC_DENSITY_RE = re.compile(r"\d+(?:[,.]\d+)*[%BMK]?")
_TEMPORAL_DENSITY_RE = re.compile(r"\b(?:Q[1-4]|(?:19|20)\d{2}|fiscal|quarter|year)\b", re.I)

_ACRONYM_RE = re.compile(r"\b[A-Z]{2,}\b")
_COMPANY_RE = re.compile(r"\bCompany\s+[A-Z]\w*")
_PRODUCT_RE = re.compile(r"\bProduct\s+[A-Z]\w*")
_FINANCE_TERM_RE = re.compile(
    r"\b(?:revenue|profit|margin|earnings|ebitda|cash flow|guidance|forecast|dividend)\b", re.I
)

_URL_RE = re.compile(r"https?://[^\s<>\"')\]]+")
_MARKDOWN_LINK_RE = re.compile(r"\[[^\]]*\]\((https?://[^)\s]+)\)")


def extract_metadata(content: str, max_key_terms: int = 10) -> ChunkMetadata:
    """Derive temporal/financial entities and section facts from chunk text."""
    temporal = extract_temporal_entities(content)
    financial = extract_financial_entities(content)
    section = classify_section(content)
    numerical_density = _per_hundred_chars(content, _NUMERIC_DENSITY_RE)
    temporal_density = _per_hundred_chars(content, _TEMPORAL_DENSITY_RE)
    return ChunkMetadata(
        temporal_entities=tuple(temporal),
        financial_entities=tuple(financial),
        section=section,
        key_terms=tuple(extract_key_terms(content, max_key_terms)),
        numerical_density=numerical_density,
        temporal_density=temporal_density,
        semantic_type=_semantic_type(section, bool(temporal), bool(financial), numerical_density, temporal_density),
        urls=tuple(extract_urls(content)),
    )


# Temporal ------------------------------------------------------------------


def extract_temporal_entities(content: str) -> list[TemporalEntity]:
    """Run families from most to least specific; earlier families claim their spans."""
    families: list[tuple[TemporalType, Pattern[str], Callable[[re.Match[str]], str | None], float]] = [
        (TemporalType.QUARTER, _QUARTER_RE, _normalize_quarter, 0.9),
        (TemporalType.DATE_RANGE, _DATE_RANGE_RE, _normalize_range, 0.8),
        (TemporalType.SPECIFIC_DATE, _SPECIFIC_DATE_RE, lambda m: _normalize_date(m.group(1)), 0.85),
        (TemporalType.FISCAL_YEAR, _FISCAL_YEAR_RE, _normalize_fiscal_year, 0.8),
        (TemporalType.MONTH, _MONTH_RE, _normalize_month, 0.7),
        (TemporalType.YEAR, _YEAR_RE, lambda m: m.group(1), 0.6),
    ]
    claimed: list[tuple[int, int]] = []
    entities: list[TemporalEntity] = []
    for entity_type, pattern, normalizer, base_confidence in families:
        for match in pattern.finditer(content):
            span = match.span()
            if _overlaps(span, claimed):
                continue
            normalized = normalizer(match)
            if normalized is None:
                continue
            claimed.append(span)
            entities.append(
                TemporalEntity(
                    type=entity_type,
                    value=match.group(0),
                    normalized=normalized,
                    confidence=_temporal_confidence(base_confidence, match.group(0)),
                    position=span[0],
                )
            )
    entities.sort(key=lambda entity: (-entity.confidence, entity.position))
    return entities


def _overlaps(span: tuple[int, int], claimed: Iterable[tuple[int, int]]) -> bool:
    start, end = span
    return any(start < other_end and other_start < end for other_start, other_end in claimed)


def _temporal_confidence(base: float, raw: str) -> float:
    years = [int(year) for year in _YEAR_RE.findall(raw)]
    if years and max(years) >= 2020:
        base += 0.1
    return min(base, 1.0)


def _normalize_quarter(match: re.Match[str]) -> str:
    number = match.group(1) or str(_QUARTER_WORDS[match.group(2).lower()])
    return f"Q{number} {match.group(3)}"


def _normalize_fiscal_year(match: re.Match[str]) -> str:
    year = match.group(1)
    if len(year) == 2:
        year = f"20{year}"
    return f"FY{year}"


def _normalize_month(match: re.Match[str]) -> str:
    month = _MONTHS.index(match.group(1).lower()) + 1
    return f"{match.group(2)}-{month:02d}"


def _normalize_range(match: re.Match[str]) -> str:
    return f"{_normalize_date(match.group(1))}/{_normalize_date(match.group(2))}"


def _normalize_date(raw: str) -> str:
    for fmt in ("%m/%d/%Y", "%m/%d/%y", "%Y-%m-%d"):
        try:
            return datetime.strptime(raw, fmt).date().isoformat()
        except ValueError:
            continue
    return raw


# Financial -----------------------------------------------------------------


def extract_financial_entities(content: str) -> list[FinancialEntity]:
    entities: list[FinancialEntity] = []

    for match in _CURRENCY_RE.finditer(content):
        suffix = match.group(2)
        amount = _parse_number(match.group(1))
        if amount is not None and suffix:
            amount *= _MULTIPLIERS[suffix.lower()]
        entities.append(
            FinancialEntity(
                type=FinancialType.CURRENCY_AMOUNT,
                value=match.group(0).strip(),
                normalized=amount,
                unit="USD",
                confidence=_financial_confidence(0.9, match.group(0)),
                position=match.start(),
            )
        )

    for match in _PERCENT_RE.finditer(content):
        entities.append(
            FinancialEntity(
                type=FinancialType.PERCENTAGE,
                value=match.group(0),
                normalized=_parse_number(match.group(1)),
                unit="%",
                confidence=_financial_confidence(0.8, match.group(0)),
                position=match.start(),
            )
        )

    for match in _METRIC_RE.finditer(content):
        suffix = match.group(3)
        value = _parse_number(match.group(2))
        if _YEAR_RE.fullmatch(match.group(2)) and not suffix:
            continue
        if value is not None and suffix and suffix.lower() in _MULTIPLIERS:
            value *= _MULTIPLIERS[suffix.lower()]
        entities.append(
            FinancialEntity(
                type=FinancialType.METRIC,
                value=match.group(0),
                normalized=value,
                unit=_metric_unit(suffix, match.group(0)),
                confidence=_financial_confidence(0.7, match.group(0)),
                position=match.start(),
                label=match.group(1).lower(),
            )
        )
    entities.sort(key=lambda entity: (-entity.confidence, entity.position))
    return entities


def _parse_number(raw: str) -> float | None:
    try:
        return float(raw.replace(",", ""))
    except ValueError:
        return None


def _metric_unit(suffix: str | None, raw: str) -> str | None:
    if suffix == "%":
        return "%"
    if "$" in raw:
        return "USD"
    return None


def _financial_confidence(base: float, raw: str) -> float:
    if re.search(r"\d\s?(?:B|M|billion|million)\b", raw):
        base += 0.1
    return min(base, 1.0)


# Section & semantics ----------------------------------------------------------


def classify_section(content: str) -> SectionInfo:
    """Priority cascade: financial statement > table > header > paragraph."""
    if any(pattern.search(content) for pattern in _FINANCIAL_STATEMENT_RE):
        return SectionInfo(type=SectionType.FINANCIAL_STATEMENT, title=_first_header(content), confidence=0.9)
    if any(pattern.search(content) for pattern in _TABLE_RE):
        return SectionInfo(type=SectionType.TABLE, title=_first_header(content), confidence=0.8)
    title = _first_header(content)
    if title is not None:
        return SectionInfo(type=SectionType.HEADER, title=title, confidence=0.7)
    return SectionInfo(type=SectionType.PARAGRAPH, title=None, confidence=0.5)


def _first_header(content: str) -> str | None:
    match = _HEADER_RE.search(content) or _ALLCAPS_HEADER_RE.search(content)
    if match is None:
        return None
    return match.group(match.lastindex or 1).strip()


def _per_hundred_chars(content: str, pattern: Pattern[str]) -> float:
    if not content:
        return 0.0
    return len(pattern.findall(content)) / (len(content) / 100)


def _semantic_type(
    section: SectionInfo,
    has_temporal: bool,
    has_financial: bool,
    numerical_density: float,
    temporal_density: float,
) -> SemanticType:
    if section.type is SectionType.FINANCIAL_STATEMENT or (has_financial and numerical_density > 5):
        return SemanticType.FINANCIAL_DATA
    if has_temporal and has_financial:
        return SemanticType.MIXED
    if has_temporal and temporal_density > 2:
        return SemanticType.TEMPORAL_CONTEXT
    if has_financial:
        return SemanticType.FINANCIAL_DATA
    return SemanticType.GENERAL


def extract_key_terms(content: str, max_terms: int = 10) -> list[str]:
    found: list[str] = []
    for pattern in (_ACRONYM_RE, _COMPANY_RE, _PRODUCT_RE, _FINANCE_TERM_RE):
        found.extend(match.group(0).lower() for match in pattern.finditer(content))
    return list(dict.fromkeys(found))[:max_terms]


def extract_urls(content: str) -> list[str]:
    urls = [match.group(1) for match in _MARKDOWN_LINK_RE.finditer(content)]
    urls.extend(match.group(0).rstrip(".,;:") for match in _URL_RE.finditer(content))
    return list(dict.fromkeys(urls))


__all__ = [
    "extract_metadata",
    "extract_temporal_entities",
    "extract_financial_entities",
    "classify_section",
    "extract_key_terms",
    "extract_urls",
]
