"""Tests for publication loading and preparation."""

import json
import logging

import pytest

import publications as pubs
import pubparse as pp

BIB = """
@article{older,
  title = {Older Paper},
  author = {Ada Lovelace and Alan Turing},
  journal = {Journal A},
  year = {2018}
}

@inproceedings{newer,
  title = {Newer Paper},
  author = {Grace Hopper},
  booktitle = {Conf B},
  year = {2022}
}
"""

CONFIG = {
    "publications": [
        {
            "id": "p1",
            "type": "journal",
            "title": {"en": "English Title", "zh": "中文标题"},
            "abstract": {"en": "Abstract", "zh": "摘要"},
            "authors": [{"name": "Li Wei", "is_highlighted": True}, {"name": "Ada Lovelace"}],
            "year": "2019",
            "journal": "Journal C",
            "doi": "10.9/abc",
        },
        {
            "type": "poster",
            "title": "No Year",
            "authors": [{"name": "Grace  Hopper"}],
        },
    ]
}


@pytest.fixture
def json_path(tmp_path):
    path = tmp_path / "publications.json"
    path.write_text(json.dumps(CONFIG, ensure_ascii=False), encoding="utf-8")
    return str(path)


@pytest.fixture
def bib_path(tmp_path):
    path = tmp_path / "publications.bib"
    path.write_text(BIB, encoding="utf-8")
    return str(path)


def test_load_json_records(json_path):
    records = pubs.load_json_records(json_path)
    assert [record.id for record in records] == ["p1", ""]
    assert records[0].year == 2019
    assert records[0].authors[0] == pp.Author("Li Wei", is_highlighted=True)
    assert records[0].title["zh"] == "中文标题"


def test_load_publications_prefers_json(json_path, bib_path):
    records = pubs.load_publications(json_path, bib_path)
    assert records[0].id == "p1"


def test_load_publications_falls_back_to_bibtex(tmp_path, bib_path, caplog):
    missing = str(tmp_path / "missing.json")
    with caplog.at_level(logging.WARNING, logger="publications"):
        records = pubs.load_publications(missing, bib_path)
    assert [record.id for record in records] == ["older", "newer"]
    assert "trying BibTeX" in caplog.text


def test_load_publications_falls_back_on_invalid_json(tmp_path, bib_path):
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    records = pubs.load_publications(str(broken), bib_path)
    assert len(records) == 2


def test_load_publications_without_any_source(tmp_path):
    with pytest.raises(pubs.PublicationSourceError):
        pubs.load_publications(str(tmp_path / "a.json"), str(tmp_path / "b.bib"))


def test_apply_highlights_matches_normalized_names(bib_path):
    records = pubs.load_bib_records(bib_path)
    pubs.apply_highlights(records, ["alan   turing", "Nobody"])
    flags = [(author.name, author.is_highlighted) for author in records[0].authors]
    assert flags == [("Ada Lovelace", False), ("Alan Turing", True)]


def test_prepare_publications(json_path):
    records = pubs.prepare_publications(
        pubs.load_json_records(json_path),
        lang="zh",
        highlight_names=["Grace Hopper"],
        current_year=2030,
    )
    first, second = records
    assert first.title == "No Year"
    assert first.year == 2030
    assert first.type == "other"
    assert first.id.startswith("pub-")
    assert first.authors[0].is_highlighted is True
    assert first.display_venue == "Unknown Venue"
    assert first.raw_bibtex.startswith(f"@misc{{{first.id},")

    assert second.display_title == "中文标题"
    assert second.display_abstract == "摘要"
    assert second.display_venue == "Journal C"
    assert second.author_string == "Li Wei, Ada Lovelace"
    assert second.url == "https://doi.org/10.9/abc"
    assert "title = {English Title}" in second.raw_bibtex


def test_prepare_publications_keeps_existing_markup(bib_path):
    records = pubs.prepare_publications(pubs.load_bib_records(bib_path), current_year=2030)
    assert [record.id for record in records] == ["newer", "older"]
    assert records[0].raw_bibtex.startswith("@inproceedings{newer,")
    assert "year = {2022}" in records[0].raw_bibtex


def test_resolve_language_falls_back():
    assert pubs.resolve_language({"en": "E", "zh": "Z"}, "zh") == "Z"
    assert pubs.resolve_language({"en": "E", "zh": "Z"}, "fr") == "E"
    assert pubs.resolve_language("Plain", "zh") == "Plain"
    assert pubs.resolve_language(None, "en") == ""


def test_publication_links():
    record = pp.PublicationRecord(
        id="k",
        url="https://code.example/x",
        fields={"code_url": "https://code.example/x", "pdf_url": "https://lab.example/x.pdf", "slides": "s.pdf"},
    )
    assert pubs.publication_links(record) == [
        ("pdf", "https://lab.example/x.pdf", "PDF"),
        ("code", "https://code.example/x", "Code"),
        ("slides", "s.pdf", "Slides"),
    ]
    record.url = "https://doi.org/10.1/x"
    assert pubs.publication_links(record)[-1] == ("link", "https://doi.org/10.1/x", "Link")


def test_filter_and_sort(bib_path):
    records = pubs.prepare_publications(pubs.load_bib_records(bib_path), current_year=2030)
    assert [record.id for record in pubs.filter_by_type(records, "journal")] == ["older"]
    assert len(pubs.filter_by_type(records, "all")) == 2
    assert [record.id for record in pubs.sort_publications(records, by="year", descending=False)] == [
        "older",
        "newer",
    ]
    assert [record.id for record in pubs.sort_publications(records, by="title")] == ["newer", "older"]
    with pytest.raises(ValueError):
        pubs.sort_publications(records, by="venue")


def test_records_to_json(bib_path):
    payload = pubs.records_to_json(pubs.load_bib_records(bib_path))
    assert [item["id"] for item in payload["publications"]] == ["older", "newer"]
    assert payload["publications"][1]["conference"] == "Conf B"
