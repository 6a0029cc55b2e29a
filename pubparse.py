#!/usr/bin/env python3
"""Parse BibTeX-style citation markup into publication records and back."""

from __future__ import annotations

from dataclasses import dataclass, field, fields as dataclass_fields
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

Text = Union[str, Dict[str, str]]


class BibParseError(ValueError):
    pass


@dataclass
class RawEntry:
    entry_type: str
    key: str
    body: str
    raw: str = ""


@dataclass
class Author:
    name: str
    is_highlighted: bool = False


@dataclass
class PublicationRecord:
    id: str
    type: str = "other"
    title: Text = ""
    abstract: Text = ""
    authors: List[Author] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    journal: Text = ""
    conference: Text = ""
    book_title: Text = ""
    school: str = ""
    how_published: str = ""
    year: Optional[int] = None
    year_text: str = ""
    month: str = ""
    volume: str = ""
    issue: str = ""
    pages: str = ""
    publisher: str = ""
    doi: str = ""
    url: str = ""
    isbn: str = ""
    issn: str = ""
    arxiv_id: str = ""
    raw_bibtex: str = ""
    display_title: str = ""
    display_abstract: str = ""
    author_string: str = ""
    display_venue: str = ""
    fields: Dict[str, Any] = field(default_factory=dict)

    def __getattr__(self, name: str) -> Any:
        # Only reached for names that are not dataclass attributes.
        if name.startswith("_"):
            raise AttributeError(name)
        extra = self.__dict__.get("fields") or {}
        if name in extra:
            return extra[name]
        raise AttributeError(f"{type(self).__name__!s} has no field {name!r}")

    def get(self, name: str, default: Any = None) -> Any:
        if name in RECORD_ATTRIBUTES and name != "fields":
            return getattr(self, name)
        return self.fields.get(name, default)

    def set(self, name: str, value: Any) -> None:
        if name in RECORD_ATTRIBUTES and name != "fields":
            setattr(self, name, value)
        else:
            self.fields[name] = value

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for item in dataclass_fields(self):
            if item.name == "fields":
                continue
            value = getattr(self, item.name)
            if item.name == "authors":
                value = [
                    {"name": author.name, "is_highlighted": author.is_highlighted}
                    for author in value
                ]
            if value is None or value in ("", [], {}):
                continue
            data[item.name] = value
        for name, value in self.fields.items():
            data.setdefault(name, value)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PublicationRecord":
        record = cls(id=str(data.get("id") or ""))
        for name, value in data.items():
            name = DICT_ALIASES.get(name, name)
            if name == "id":
                continue
            if name == "authors":
                record.authors = coerce_authors(value)
            elif name == "keywords":
                record.keywords = split_keywords(value) if isinstance(value, str) else list(value or [])
            elif name == "year":
                record.year_text = "" if value is None else str(value)
                record.year = parse_year(value)
            else:
                record.set(name, value)
        if not record.type:
            record.type = "other"
        return record


PUBLICATION_TYPES = (
    "journal",
    "conference",
    "book_chapter",
    "book",
    "thesis",
    "report",
    "other",
    "preprint",
    "patent",
    "dataset",
    "software",
)
TYPE_MAPPING = {
    "article": "journal",
    "inproceedings": "conference",
    "incollection": "book_chapter",
    "book": "book",
    "phdthesis": "thesis",
    "mastersthesis": "thesis",
    "techreport": "report",
    "misc": "other",
    "unpublished": "preprint",
    "inbook": "book_chapter",
    "proceedings": "conference",
    "booklet": "other",
    "manual": "other",
    "patent": "patent",
    "dataset": "dataset",
    "software": "software",
}
REVERSE_TYPE_MAPPING = {
    "journal": "article",
    "conference": "inproceedings",
    "book_chapter": "incollection",
    "book": "book",
    "thesis": "phdthesis",
    "report": "techreport",
    "other": "misc",
    "preprint": "unpublished",
    "patent": "patent",
    "dataset": "dataset",
    "software": "software",
}
# Table order is the field order of generated markup.
FIELD_MAPPINGS = {
    "title": "title",
    "author": "authors",
    "year": "year",
    "month": "month",
    "journal": "journal",
    "booktitle": "conference",
    "volume": "volume",
    "number": "issue",
    "pages": "pages",
    "publisher": "publisher",
    "doi": "doi",
    "url": "url",
    "isbn": "isbn",
    "issn": "issn",
    "abstract": "abstract",
    "keywords": "keywords",
    "note": "note",
    "series": "series",
    "edition": "edition",
    "chapter": "chapter",
    "school": "school",
    "institution": "institution",
    "organization": "organization",
    "address": "address",
    "howpublished": "how_published",
    "type": "publication_type",
    "venue": "venue",
    "location": "location",
    "editor": "editors",
    "copyright": "copyright",
    "language": "language",
    "isbn13": "isbn13",
    "issn13": "issn13",
    "pmid": "pmid",
    "pmcid": "pmcid",
    "arxiv": "arxiv_id",
    "code": "code_url",
    "data": "data_url",
    "slides": "slides_url",
    "video": "video_url",
    "blog": "blog_url",
    "press": "press_url",
    "pdf": "pdf_url",
    "award": "award",
    "impact_factor": "impact_factor",
    "citation_count": "citation_count",
    "altmetric": "altmetric_score",
    "research_area": "research_area",
    "research_group": "research_group",
    "funding": "funding",
    "acknowledgments": "acknowledgments",
    "collaborators": "collaborators",
    "competitions": "competitions",
    "patents": "patents",
    "software": "software",
    "datasets": "datasets",
    "presentations": "presentations",
    "media_coverage": "media_coverage",
    "public_engagement": "public_engagement",
    "policy_impact": "policy_impact",
    "industry_collaboration": "industry_collaboration",
    "international_collaboration": "international_collaboration",
    "student_authors": "student_authors",
    "early_career_authors": "early_career_authors",
    "corresponding_author": "corresponding_author",
    "equal_contribution": "equal_contribution",
    "senior_author": "senior_author",
}
MAPPED_ATTRIBUTES = set(FIELD_MAPPINGS.values())
RECORD_ATTRIBUTES = {item.name for item in dataclass_fields(PublicationRecord)}
# Set by the parser itself; a source field of the same name stays in ``fields``.
RESERVED_ATTRIBUTES = {
    "id",
    "type",
    "fields",
    "raw_bibtex",
    "year_text",
    "display_title",
    "display_abstract",
    "author_string",
    "display_venue",
}
# Unmapped source names that address a record attribute directly.
DIRECT_ATTRIBUTES = (MAPPED_ATTRIBUTES | RECORD_ATTRIBUTES) - RESERVED_ATTRIBUTES
VERBATIM_ATTRIBUTES = {
    "url",
    "doi",
    "arxiv_id",
    "pmid",
    "pmcid",
    "volume",
    "issue",
    "pages",
}
DICT_ALIASES = {
    "booktitle": "book_title",
    "howpublished": "how_published",
    "arxiv": "arxiv_id",
    "bibtex": "raw_bibtex",
}
PRESERVE_TYPES = {"comment", "preamble", "string"}
UNKNOWN_VENUE = "Unknown Venue"

COMMENT_RE = re.compile(r"(?<!\\)%.*$", re.MULTILINE)
BLANK_LINES_RE = re.compile(r"\n\s*\n")
NESTED_GROUP = r"\{(?:[^{}]|\{(?:[^{}]|\{[^{}]*\})*\})*\}"
QUOTED_VALUE = r'"[^"]*"'
# A top-level "@" outside braces and quotes starts the next entry.
ENTRY_RE = re.compile(
    r'@(\w+)\s*\{\s*([^,{}@"]+?)\s*,((?:[^{}@"]|'
    + QUOTED_VALUE
    + "|"
    + NESTED_GROUP
    + r")*)\}"
)
ENTRY_HEADER_RE = re.compile(r"@(\w+)\s*\{")
FIELD_RE = re.compile(r"(\w+)\s*=\s*\{([^{}]*(?:\{[^{}]*\}[^{}]*)*)\}")
ESCAPED_PUNCTUATION_RE = re.compile(r"\\[`'\"~^=.{}]")
ESCAPED_SPECIAL_RE = re.compile(r"\\([&%#])")
EMPTY_BRACES_RE = re.compile(r"\{\s*\}")
LATEX_COMMAND_ARG_RE = re.compile(r"\\[a-zA-Z]+\{([^}]+)\}")
LATEX_COMMAND_RE = re.compile(r"\\[a-zA-Z]+")
KEYWORD_SEPARATOR_RE = re.compile(r"[,;]\s*")
LEADING_INT_RE = re.compile(r"\s*(\d+)")
MONTH_YEAR_RE = re.compile(r"\b(?:19|20)\d{2}\b")
SPECIAL_CHARS_RE = re.compile(r"(?<!\\)([&%#])")


def has_balanced_outer_braces(value: str) -> bool:
    """True when the whole value is a single ``{...}`` group."""
    if not value.startswith("{"):
        return False
    depth = 0
    for idx, ch in enumerate(value):
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        if depth == 0:
            return idx == len(value) - 1
    return False


def strip_outer_braces_quotes(value: str) -> str:
    if value is None:
        return ""
    text = value.strip()
    if not text:
        return ""
    if len(text) > 1 and text.startswith('"') and text.endswith('"'):
        text = text[1:-1].strip()
    if has_balanced_outer_braces(text):
        text = text[1:-1].strip()
    return text


def normalize_whitespace(text: str) -> str:
    return " ".join(text.split())


def shorten_value(value: str, limit: int = 60) -> str:
    text = value.replace("\n", " ").strip()
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


def line_number(text: str, pos: int) -> int:
    return text.count("\n", 0, pos) + 1


def preprocess(text: str) -> str:
    text = COMMENT_RE.sub("", text or "")
    text = BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()


def extract_entries(text: str, strict: bool = False) -> List[RawEntry]:
    """Split a citation-markup document into raw entries, in document order.

    The default scan is lenient: an entry whose braces do not close (or nest
    deeper than field values are allowed to) is skipped with a warning and the
    rest of the document is still read. With ``strict=True`` braces are
    counted to any depth and structural problems raise ``BibParseError``.
    """
    cleaned = preprocess(text)
    if strict:
        return scan_entries(cleaned)
    entries: List[RawEntry] = []
    spans: List[Tuple[int, int]] = []
    for match in ENTRY_RE.finditer(cleaned):
        spans.append(match.span())
        entry_type = match.group(1).lower()
        if entry_type in PRESERVE_TYPES:
            continue
        entries.append(
            RawEntry(
                entry_type=entry_type,
                key=match.group(2).strip(),
                body=match.group(3).strip(),
                raw=match.group(0),
            )
        )
    warn_skipped_entries(cleaned, spans)
    return entries


def warn_skipped_entries(text: str, spans: List[Tuple[int, int]]) -> None:
    for match in ENTRY_HEADER_RE.finditer(text):
        if match.group(1).lower() in PRESERVE_TYPES:
            continue
        start = match.start()
        if any(low <= start < high for low, high in spans):
            continue
        logger.warning(
            "Skipping malformed entry @%s near line %d: unbalanced braces or missing key",
            match.group(1),
            line_number(text, start),
        )


def scan_entries(text: str) -> List[RawEntry]:
    entries: List[RawEntry] = []
    idx = 0
    while idx < len(text):
        at = text.find("@", idx)
        if at == -1:
            break
        parsed = parse_entry_at(text, at)
        if not parsed:
            idx = at + 1
            continue
        entry_type, body, end = parsed
        idx = end
        if entry_type in PRESERVE_TYPES:
            continue
        parts = split_top_level(body, 1)
        key = parts[0].strip()
        fields_part = parts[1] if len(parts) > 1 else ""
        if not key:
            raise BibParseError(
                f"Missing citation key in @{entry_type} entry at line {line_number(text, at)}"
            )
        entries.append(
            RawEntry(entry_type=entry_type, key=key, body=fields_part.strip(), raw=text[at:end])
        )
    return entries


def parse_entry_at(text: str, start: int) -> Optional[Tuple[str, str, int]]:
    idx = start + 1
    while idx < len(text) and text[idx].isspace():
        idx += 1
    type_start = idx
    while idx < len(text) and (text[idx].isalnum() or text[idx] in "_-"):
        idx += 1
    entry_type = text[type_start:idx].lower()
    if not entry_type:
        return None
    while idx < len(text) and text[idx].isspace():
        idx += 1
    if idx >= len(text) or text[idx] not in "{(":
        return None
    open_char = text[idx]
    close_char = "}" if open_char == "{" else ")"
    idx += 1
    body_start = idx
    depth = 1
    while idx < len(text) and depth > 0:
        ch = text[idx]
        if ch == open_char:
            depth += 1
        elif ch == close_char:
            depth -= 1
        idx += 1
    if depth != 0:
        raise BibParseError(
            f"Unbalanced braces in @{entry_type} entry at line {line_number(text, start)}"
        )
    body_end = idx - 1
    body = text[body_start:body_end]
    return entry_type, body, idx


def split_top_level(text: str, maxsplit: int = -1) -> List[str]:
    """Split on commas outside braces and outside top-level quoted values."""
    parts: List[str] = []
    depth = 0
    in_quotes = False
    start = 0
    for idx, ch in enumerate(text):
        if ch == '"' and depth == 0 and text[idx - 1 : idx] != "\\":
            in_quotes = not in_quotes
        elif in_quotes:
            continue
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth = max(depth - 1, 0)
        elif ch == "," and depth == 0:
            if len(parts) == maxsplit:
                break
            parts.append(text[start:idx])
            start = idx + 1
    parts.append(text[start:])
    return parts


def field_chunks(body: str) -> List[str]:
    return [chunk.strip() for chunk in split_top_level(body) if chunk.strip()]


def clean_field_value(value: str) -> str:
    text = ESCAPED_PUNCTUATION_RE.sub("", value)
    text = ESCAPED_SPECIAL_RE.sub(r"\1", text)
    text = EMPTY_BRACES_RE.sub("", text)
    text = normalize_whitespace(text)
    if has_balanced_outer_braces(text):
        text = text[1:-1].strip()
    return text


def clean_latex(text: str) -> str:
    text = LATEX_COMMAND_ARG_RE.sub(r"\1", text)
    text = LATEX_COMMAND_RE.sub("", text)
    text = text.replace("{", "").replace("}", "")
    return normalize_whitespace(text)


def parse_fields(body: str, strict: bool = False) -> Dict[str, str]:
    """Read ``name = {value}`` assignments from an entry body.

    Lenient parsing only accepts braced values with at most one level of
    nested braces; any other assignment is left out and logged. Strict
    parsing also accepts quoted and bare values and any nesting depth.
    """
    fields: Dict[str, str] = {}
    if strict:
        for chunk in field_chunks(body):
            name, sep, value = chunk.partition("=")
            name = name.strip().lower()
            if not sep or not name:
                logger.warning("Skipping field text %r: no name = value assignment", shorten_value(chunk))
                continue
            fields[name] = clean_field_value(strip_outer_braces_quotes(value))
        return fields

    for match in FIELD_RE.finditer(body):
        fields[match.group(1).lower()] = clean_field_value(match.group(2))
    for chunk in field_chunks(body):
        name, sep, value = chunk.partition("=")
        name = name.strip().lower()
        if sep and name and name not in fields:
            logger.warning(
                "Skipping field %r: value %r is not a {...} group with at most one nested level",
                name,
                shorten_value(value),
            )
    return fields


def split_authors(value: str) -> List[str]:
    if not value:
        return []
    return [
        part.strip()
        for part in re.split(r"\s+and\s+", value, flags=re.IGNORECASE)
        if part.strip()
    ]


def split_keywords(value: str) -> List[str]:
    if not value:
        return []
    parts = [part.strip() for part in KEYWORD_SEPARATOR_RE.split(value)]
    return [part for part in parts if part]


def parse_year(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if value is None:
        return None
    match = LEADING_INT_RE.match(str(value))
    return int(match.group(1)) if match else None


def coerce_authors(value: Any) -> List[Author]:
    if not value:
        return []
    if isinstance(value, str):
        return [Author(name=name) for name in split_authors(value)]
    authors: List[Author] = []
    for item in value:
        if isinstance(item, Author):
            authors.append(item)
        elif isinstance(item, dict):
            name = str(item.get("name") or "").strip()
            if name:
                authors.append(Author(name=name, is_highlighted=bool(item.get("is_highlighted"))))
        elif str(item).strip():
            authors.append(Author(name=str(item).strip()))
    return authors


def map_entry_type(entry_type: str) -> str:
    return TYPE_MAPPING.get((entry_type or "").lower(), "other")


def reverse_map_type(publication_type: str) -> str:
    return REVERSE_TYPE_MAPPING.get(publication_type, "misc")


def is_verbatim_attribute(attribute: str) -> bool:
    return attribute in VERBATIM_ATTRIBUTES or attribute.endswith("_url")


def process_field(attribute: str, value: str) -> Any:
    if attribute == "authors":
        return [Author(name=name) for name in split_authors(value)]
    if attribute == "keywords":
        return split_keywords(value)
    if is_verbatim_attribute(attribute):
        return value
    return clean_latex(value)


def display_text(value: Optional[Text], lang: Optional[str] = None) -> str:
    if isinstance(value, dict):
        for code in (lang, "en", "zh"):
            if code and value.get(code):
                return value[code]
        return next((text for text in value.values() if text), "")
    return value or ""


def display_venue(record: PublicationRecord) -> str:
    for value in (record.journal, record.conference, record.book_title):
        text = display_text(value)
        if text:
            return text
    if record.school:
        return f"PhD Thesis, {record.school}"
    if record.how_published:
        return record.how_published
    return UNKNOWN_VENUE


def set_computed_fields(record: PublicationRecord) -> PublicationRecord:
    record.display_title = display_text(record.title)
    record.author_string = ", ".join(author.name for author in record.authors)
    record.display_venue = display_venue(record)
    if record.year is None and record.month:
        match = MONTH_YEAR_RE.search(record.month)
        if match:
            record.year = int(match.group(0))
    if not record.url:
        if record.doi:
            record.url = f"https://doi.org/{record.doi}"
        elif record.arxiv_id:
            record.url = f"https://arxiv.org/abs/{record.arxiv_id}"
    return record


def record_from_fields(
    entry_type: str, key: str, fields: Dict[str, str], raw: str = ""
) -> PublicationRecord:
    record = PublicationRecord(id=key, type=map_entry_type(entry_type), raw_bibtex=raw)
    for name, value in fields.items():
        attribute = FIELD_MAPPINGS.get(name)
        if attribute is None and name in DIRECT_ATTRIBUTES:
            attribute = name
        if attribute is None:
            record.fields[name] = value
        elif attribute == "year":
            record.year_text = value
            record.year = parse_year(value)
        else:
            record.set(attribute, process_field(attribute, value))
    return set_computed_fields(record)


def parse_entry(entry: RawEntry, strict: bool = False) -> PublicationRecord:
    fields = parse_fields(entry.body, strict=strict)
    return record_from_fields(entry.entry_type, entry.key, fields, raw=entry.raw)


def parse_bibtex(text: str, strict: bool = False) -> List[PublicationRecord]:
    records = [parse_entry(entry, strict=strict) for entry in extract_entries(text, strict=strict)]
    logger.debug("Parsed %d publication records", len(records))
    return records


def escape_special(text: str) -> str:
    return SPECIAL_CHARS_RE.sub(r"\\\1", text)


def format_field_value(attribute: str, value: Any) -> str:
    if attribute == "authors":
        return " and ".join(author.name for author in coerce_authors(value))
    if isinstance(value, dict):
        value = display_text(value)
    if isinstance(value, (list, tuple)):
        return escape_special(", ".join(str(item) for item in value))
    if isinstance(value, str):
        return escape_special(value)
    return str(value)


def to_bibtex_fields(record: PublicationRecord) -> Dict[str, str]:
    fields: Dict[str, str] = {}
    for bib_field, attribute in FIELD_MAPPINGS.items():
        value = record.get(attribute)
        if attribute == "year" and value is None:
            value = record.year_text
        if not value:
            continue
        fields[bib_field] = format_field_value(attribute, value)
    for name in sorted(DIRECT_ATTRIBUTES - MAPPED_ATTRIBUTES):
        value = record.get(name)
        if value and name not in fields:
            fields[name] = format_field_value(name, value)
    for name, value in record.fields.items():
        if name in MAPPED_ATTRIBUTES or name in fields or not value:
            continue
        fields[name] = format_field_value(name, value)
    return fields


def generate_bibtex(record: PublicationRecord) -> str:
    fields = to_bibtex_fields(record)
    lines = [f"@{reverse_map_type(record.type)}{{{record.id},"]
    last = len(fields) - 1
    for idx, (name, value) in enumerate(fields.items()):
        comma = "," if idx < last else ""
        lines.append(f"  {name} = {{{value}}}{comma}")
    lines.append("}")
    return "\n".join(lines)


def write_bibtex(path: str, records: Iterable[PublicationRecord]) -> None:
    blocks = [generate_bibtex(record) for record in records]
    content = "\n\n".join(blocks).strip() + "\n"
    with open(path, "w", encoding="utf-8") as handle:
        handle.write(content)
