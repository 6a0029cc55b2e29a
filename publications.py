"""Load publication records for the site and prepare them for rendering.

Records come from ``config/publications.json`` when it is readable and fall
back to the BibTeX bibliography otherwise. Preparation fills the display
fields the templates read (title, abstract, venue, author string) for one
language, merges configured author highlighting, and orders the list.
"""

from __future__ import annotations

import datetime
import json
import logging
import re
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pubparse as pp

logger = logging.getLogger(__name__)

DEFAULT_JSON_PATH = "config/publications.json"
DEFAULT_BIB_PATH = "assets/bibliography/publications.bib"
LINK_KINDS = (
    ("pdf", "pdf_url", "PDF"),
    ("code", "code_url", "Code"),
    ("data", "data_url", "Data"),
    ("slides", "slides_url", "Slides"),
    ("video", "video_url", "Video"),
    ("blog", "blog_url", "Blog"),
)
SORT_KEYS = ("year", "title")


class PublicationSourceError(RuntimeError):
    pass


def load_json_records(path: str) -> List[pp.PublicationRecord]:
    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    items = data.get("publications", []) if isinstance(data, dict) else data
    if not isinstance(items, list):
        raise ValueError(f"{path}: 'publications' must be a list")
    return [pp.PublicationRecord.from_dict(item) for item in items if isinstance(item, dict)]


def load_bib_records(path: str, strict: bool = False) -> List[pp.PublicationRecord]:
    with open(path, "r", encoding="utf-8") as handle:
        text = handle.read()
    return pp.parse_bibtex(text, strict=strict)


def load_publications(
    json_path: Optional[str] = DEFAULT_JSON_PATH,
    bib_path: Optional[str] = DEFAULT_BIB_PATH,
    strict: bool = False,
) -> List[pp.PublicationRecord]:
    """Return records from the JSON config, or from the bibliography if that fails.

    Raises PublicationSourceError when neither source can be read.
    """
    if json_path:
        try:
            return load_json_records(json_path)
        except (OSError, ValueError) as exc:
            logger.warning("Could not load publications from %s (%s), trying BibTeX", json_path, exc)
    if bib_path:
        try:
            return load_bib_records(bib_path, strict=strict)
        except (OSError, ValueError) as exc:
            logger.error("Could not load publications from %s: %s", bib_path, exc)
    raise PublicationSourceError("Failed to load publications from any source")


def normalize_name(name: str) -> str:
    return re.sub(r"\s+", " ", name).strip().lower()


def apply_highlights(records: Iterable[pp.PublicationRecord], names: Iterable[str]) -> None:
    wanted = {normalize_name(name) for name in names if name and name.strip()}
    if not wanted:
        return
    for record in records:
        for author in record.authors:
            if normalize_name(author.name) in wanted:
                author.is_highlighted = True


def resolve_language(value: Any, lang: str) -> str:
    return pp.display_text(value, lang)


def new_record_id() -> str:
    return f"pub-{uuid.uuid4().hex[:9]}"


def prepare_publications(
    records: List[pp.PublicationRecord],
    lang: str = "en",
    highlight_names: Optional[Iterable[str]] = None,
    current_year: Optional[int] = None,
) -> List[pp.PublicationRecord]:
    if current_year is None:
        current_year = datetime.date.today().year
    if highlight_names:
        apply_highlights(records, highlight_names)
    for record in records:
        if not record.id:
            record.id = new_record_id()
        if record.type not in pp.PUBLICATION_TYPES:
            logger.debug("Unknown publication type %r on %s, using 'other'", record.type, record.id)
            record.type = "other"
        if record.year is None:
            record.year = current_year
        pp.set_computed_fields(record)
        record.display_title = resolve_language(record.title, lang)
        record.display_abstract = resolve_language(record.abstract, lang)
        if not record.raw_bibtex:
            record.raw_bibtex = pp.generate_bibtex(record)
    return sort_publications(records)


def publication_links(record: pp.PublicationRecord) -> List[Tuple[str, str, str]]:
    links: List[Tuple[str, str, str]] = []
    for kind, attribute, label in LINK_KINDS:
        url = record.get(attribute) or record.get(kind)
        if url:
            links.append((kind, url, label))
    if record.url and all(url != record.url for _, url, _ in links):
        links.append(("link", record.url, "Link"))
    return links


def filter_by_type(records: Iterable[pp.PublicationRecord], kind: str = "all") -> List[pp.PublicationRecord]:
    if not kind or kind == "all":
        return list(records)
    return [record for record in records if record.type == kind]


def sort_publications(
    records: Iterable[pp.PublicationRecord], by: str = "year", descending: bool = True
) -> List[pp.PublicationRecord]:
    if by not in SORT_KEYS:
        raise ValueError(f"Cannot sort publications by {by!r}; expected one of {', '.join(SORT_KEYS)}")
    if by == "title":
        return sorted(
            records,
            key=lambda record: (record.display_title or pp.display_text(record.title)).lower(),
        )
    return sorted(records, key=lambda record: record.year or 0, reverse=descending)


def records_to_json(records: Iterable[pp.PublicationRecord]) -> Dict[str, Any]:
    return {"publications": [record.to_dict() for record in records]}
