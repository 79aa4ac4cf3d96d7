"""
Naming-convention parsers shared by the validation rules and the fix handlers.

Deal titles follow ``CODE-Vessel`` where ``CODE`` is letters followed by
digits (``NY2594``, ``MES2024001``). ``ED`` projects may carry extra
segments between the code and the vessel (``ED12345-Survey-Ocean Star``).
Quote numbers follow ``CODE-QU<digits>-<version>[-v<digits>]``.

Every function here is total: bad input yields an invalid result, never an
exception.
"""

import re
from typing import List, Optional, Tuple

from .models import ParsedTitle, QuoteNumberCheck

DUPLICATE_SUFFIX = re.compile(r"\s*\((?:\d+|copy)\)\s*$", re.IGNORECASE)
COUNTER_SUFFIX = re.compile(r"\s*\(\d+\)\s*$")
QUOTE_NUMBER_PREFIX = re.compile(r"^QU\d+", re.IGNORECASE)
PROJECT_CODE = re.compile(r"^([A-Z]+\d+)", re.IGNORECASE)
ED_CODE = re.compile(r"^ED\d+$", re.IGNORECASE)
LEADING_DASH = re.compile(r"^\s*-\s*")
DASH = re.compile(r"\s*-\s*")
NON_ALNUM = re.compile(r"[^a-z0-9]+")

KEY_WITH_SEPARATOR = re.compile(r"^([A-Z]+\d+)(?:\s*-\s*|\s+)(.+)$", re.IGNORECASE)
KEY_COMPACT = re.compile(r"^([A-Z]+\d+)([A-Z].*)$", re.IGNORECASE)

DEAL_ID_REFERENCE = re.compile(r"\bdeal\s*id\b\s*[:#=]?\s*(\d+)", re.IGNORECASE)

STANDARD_QUOTE_NUMBER = re.compile(r"^[A-Z]+\d+-QU\d+-\d+(?:-v\d+)?$", re.IGNORECASE)
ED_QUOTE_NUMBER = re.compile(r"^ED\d+\b.*-QU\d+", re.IGNORECASE)
CODE_TOKEN = re.compile(r"[A-Z]+\d+", re.IGNORECASE)
QU_TOKEN = re.compile(r"QU\d+", re.IGNORECASE)
MERGED_TOKEN = re.compile(r"([A-Z]+\d+)(QU\d+)", re.IGNORECASE)
REVISION_TOKEN = re.compile(r"v\d+", re.IGNORECASE)

QUOTE_NUMBER_HINTS = {
    "missing_number": "Assign a quote number in the format {example}",
    "missing_project_prefix": "Add the project code prefix: {example}",
    "missing_qu_marker": "Insert the QU marker before the quote sequence: {example}",
    "missing_separator": "Separate the project code and QU marker with a dash: {example}",
    "missing_version": "Append a version number: {example}",
    "malformed_version_suffix": "Use -<version> with an optional -v<revision> suffix: {example}",
    "non_standard_format": "Rename the quote to {example}",
}
QUOTE_NUMBER_TEMPLATE = "PROJECTCODE-QU<number>-<version>"


def strip_duplicate_suffix(title: str) -> str:
    """Remove the ``(2)`` / ``(copy)`` marker Pipedrive appends to duplicated deals."""
    return DUPLICATE_SUFFIX.sub("", title).strip()


def _invalid(raw: str, reason: str, **parts) -> ParsedTitle:
    return ParsedTitle(raw=raw, is_invalid=True, invalid_reason=reason, **parts)


def parse_title(title) -> ParsedTitle:
    if not isinstance(title, str) or not title.strip():
        return _invalid(title if isinstance(title, str) else "", "empty_title")

    clean = strip_duplicate_suffix(title)
    if QUOTE_NUMBER_PREFIX.match(clean):
        return _invalid(title, "quote_number_as_title")

    code_match = PROJECT_CODE.match(clean)
    if not code_match:
        return _invalid(title, "missing_project_code")

    code = code_match.group(1).upper()
    is_ed = bool(ED_CODE.match(code))
    rest = clean[code_match.end():]

    separator_match = LEADING_DASH.match(rest)
    if not separator_match:
        leftover = rest.strip()
        if not leftover:
            return _invalid(title, "missing_vessel", project_code=code, is_ed_format=is_ed)
        return _invalid(title, "missing_separator", project_code=code, vessel_name=leftover, is_ed_format=is_ed)

    separator = separator_match.group(0)
    segments = [segment.strip() for segment in DASH.split(rest[separator_match.end():].strip())]

    if is_ed:
        vessel = segments[-1]
    elif len(segments) > 1:
        return _invalid(title, "unexpected_segments", project_code=code, separator=separator)
    else:
        vessel = segments[0]

    if not vessel:
        return _invalid(title, "missing_vessel", project_code=code, separator=separator, is_ed_format=is_ed)
    if vessel.replace(" ", "").isdigit():
        return _invalid(
            title, "numeric_vessel", project_code=code, vessel_name=vessel, separator=separator, is_ed_format=is_ed
        )

    return ParsedTitle(raw=title, project_code=code, vessel_name=vessel, separator=separator, is_ed_format=is_ed)


def normalize_title(title) -> str:
    parsed = parse_title(title)
    if parsed.is_invalid:
        return ""
    return parsed.canonical_title.lower()


def suggest_title(parsed: ParsedTitle) -> Optional[str]:
    """Canonical title for an invalid parse when the intent is unambiguous."""
    if parsed.invalid_reason == "missing_separator" and parsed.project_code and parsed.vessel_name:
        if parsed.vessel_name.replace(" ", "").isdigit():
            return None
        return f"{parsed.project_code}-{parsed.vessel_name}"
    return None


def _alnum(text: str) -> str:
    return NON_ALNUM.sub("", text.lower())


def generate_project_key(name) -> str:
    if not isinstance(name, str) or not name:
        return ""
    clean = COUNTER_SUFFIX.sub("", name).strip()

    match = KEY_WITH_SEPARATOR.match(clean) or KEY_COMPACT.match(clean)
    if match:
        return f"{match.group(1).lower()}-{_alnum(match.group(2))}"
    return _alnum(clean)


def extract_deal_id_from_reference(text) -> Optional[int]:
    """
    Pull the Pipedrive deal id out of a quote's free-text reference.

    Accepts ``Pipedrive Deal Id: 189``, ``Deal ID:189``, ``deal id : 189``
    and the same embedded in surrounding text.
    """
    if not isinstance(text, str) or not text:
        return None
    match = DEAL_ID_REFERENCE.search(text)
    return int(match.group(1)) if match else None


def _version_parts(after: List[str]) -> Tuple[str, Optional[str]]:
    version = next((token for token in after if token.isdigit()), "1")
    revision = next((token.lower() for token in after if REVISION_TOKEN.fullmatch(token)), None)
    return version, revision


def _suggest_number(code: Optional[str], qu: Optional[str], after: List[str]) -> Optional[str]:
    if not code or not qu:
        return None
    version, revision = _version_parts(after)
    number = f"{code.upper()}-{qu.upper()}-{version}"
    return f"{number}-{revision}" if revision else number


def check_quote_number(number, project_code: Optional[str] = None) -> QuoteNumberCheck:
    if not isinstance(number, str) or not number.strip():
        example = f"{project_code.upper()}-QU<number>-1" if project_code else QUOTE_NUMBER_TEMPLATE
        return QuoteNumberCheck(
            number=None,
            is_valid=False,
            reasons=("missing_number",),
            suggested_fix=QUOTE_NUMBER_HINTS["missing_number"].format(example=example),
        )

    text = number.strip()
    if STANDARD_QUOTE_NUMBER.match(text) or ED_QUOTE_NUMBER.match(text):
        return QuoteNumberCheck(number=text, is_valid=True)

    tokens = [token.strip() for token in text.split("-")]
    first = tokens[0]
    reasons: List[str] = []
    code: Optional[str] = None
    qu: Optional[str] = None
    qu_index: Optional[int] = None

    merged = MERGED_TOKEN.fullmatch(first)
    if merged:
        reasons.append("missing_separator")
        code, qu, qu_index = merged.group(1), merged.group(2), 0
    else:
        if QU_TOKEN.fullmatch(first) or not CODE_TOKEN.fullmatch(first):
            reasons.append("missing_project_prefix")
        else:
            code = first
        qu_index = next((i for i, token in enumerate(tokens) if QU_TOKEN.fullmatch(token)), None)
        if qu_index is None:
            reasons.append("missing_qu_marker")
        else:
            qu = tokens[qu_index]

    after = tokens[qu_index + 1:] if qu_index is not None else tokens[1:]
    if qu_index is not None:
        if not after:
            reasons.append("missing_version")
        elif not after[0].isdigit():
            reasons.append("malformed_version_suffix")
        elif len(after) > 2 or (len(after) == 2 and not REVISION_TOKEN.fullmatch(after[1])):
            reasons.append("malformed_version_suffix")
        elif qu_index > 1:
            reasons.append("non_standard_format")
    if not reasons:
        reasons.append("non_standard_format")

    code = project_code or code
    if qu is None and after and after[0].isdigit():
        # NY2594-22554-1: the first numeric token is the quote sequence
        qu, after = f"QU{after[0]}", after[1:]
    suggested = _suggest_number(code, qu, after)

    example = suggested or QUOTE_NUMBER_TEMPLATE
    return QuoteNumberCheck(
        number=text,
        is_valid=False,
        reasons=tuple(reasons),
        suggested_number=suggested,
        suggested_fix=QUOTE_NUMBER_HINTS[reasons[0]].format(example=example),
    )
