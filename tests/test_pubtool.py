"""Tests for the command line and the bibtexparser backend."""

import json

import bibtexparser
import pytest

import pubtool

BIB = r"""
@article{smith2020,
  title = {The {Great} Paper},
  author = {Jane Smith and John Doe},
  journal = {Nature},
  year = {2020},
  doi = {10.1/x}
}

@inproceedings{doe2021,
  title = {The \textbf{Bold} Claim},
  author = {John Doe},
  booktitle = {Some Conf},
  year = {2021}
}
"""


@pytest.fixture
def bib_path(tmp_path):
    path = tmp_path / "lab.bib"
    path.write_text(BIB, encoding="utf-8")
    return path


def test_parse_command_writes_json(bib_path, tmp_path):
    out = tmp_path / "publications.json"
    assert pubtool.main(["parse", str(bib_path), "-o", str(out), "--highlight", "John Doe"]) == 0
    payload = json.loads(out.read_text(encoding="utf-8"))
    items = payload["publications"]
    assert [item["id"] for item in items] == ["smith2020", "doe2021"]
    assert items[0]["type"] == "journal"
    assert items[0]["url"] == "https://doi.org/10.1/x"
    assert items[0]["authors"][1] == {"name": "John Doe", "is_highlighted": True}
    assert items[1]["display_venue"] == "Some Conf"


def test_parse_command_prints_to_stdout(bib_path, capsys):
    assert pubtool.main(["parse", str(bib_path)]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert len(payload["publications"]) == 2


def test_export_command_round_trips(bib_path, tmp_path):
    json_path = tmp_path / "publications.json"
    pubtool.main(["parse", str(bib_path), "-o", str(json_path)])
    assert pubtool.main(["export", str(json_path)]) == 0
    exported = (tmp_path / "publications.bib").read_text(encoding="utf-8")
    assert exported.startswith("@article{smith2020,\n  title = {The Great Paper},")
    assert "@inproceedings{doe2021," in exported
    assert "author = {Jane Smith and John Doe}" in exported


def test_list_command(bib_path, tmp_path, capsys):
    missing = tmp_path / "missing.json"
    assert pubtool.main(["list", "--json", str(missing), "--bib", str(bib_path), "--type", "conference"]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out[0] == "[2021] doe2021 (conference): The Bold Claim / John Doe / Some Conf"
    assert out[-1] == "Publications: 1"


def test_list_command_without_sources(tmp_path, capsys):
    code = pubtool.main(["list", "--json", str(tmp_path / "a.json"), "--bib", str(tmp_path / "b.bib")])
    assert code == 1
    assert "Failed to load publications from any source" in capsys.readouterr().out


def test_strict_parse_reports_unbalanced_braces(tmp_path, capsys):
    path = tmp_path / "broken.bib"
    path.write_text("@article{a,\n  title = {Open\n", encoding="utf-8")
    assert pubtool.main(["parse", str(path), "--strict"]) == 1
    assert "Unbalanced braces" in capsys.readouterr().out


def test_bibtexparser_backend():
    assert bibtexparser.__version__.startswith("1.")
    records = pubtool.load_bibtexparser(BIB)
    by_id = {record.id: record for record in records}
    assert set(by_id) == {"smith2020", "doe2021"}
    assert by_id["smith2020"].type == "journal"
    assert by_id["smith2020"].title == "The Great Paper"
    assert by_id["smith2020"].author_string == "Jane Smith, John Doe"
    assert by_id["smith2020"].url == "https://doi.org/10.1/x"
    assert by_id["doe2021"].display_venue == "Some Conf"
    assert by_id["doe2021"].raw_bibtex.startswith("@inproceedings{doe2021,")
