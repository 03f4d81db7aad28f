"""Tests for SKILL.md metadata extraction."""

import pytest

from skillsearch.errors import ParseError
from skillsearch.registry.extractor import (
    content_hash,
    extract,
    parse_header,
    split_front_matter_text,
)


PDF_SKILL = b"""---
name: pdf
description: Extract text and tables from PDF files
compatibility: claude-code
license: MIT
metadata:
  author: anthropic
  version: 1.2.0
---

# PDF processing

Use pdfplumber to read pages.
"""


def test_extract_front_matter():
    skill = extract(PDF_SKILL, "pdf/SKILL.md")

    assert skill.slug == "pdf"
    assert skill.name == "pdf"
    assert skill.description == "Extract text and tables from PDF files"
    assert skill.compatibility == "claude-code"
    assert skill.relative_path == "pdf"
    assert skill.raw_metadata == {
        "license": "MIT",
        "metadata.author": "anthropic",
        "metadata.version": "1.2.0",
    }
    assert skill.version == "1.2.0"
    assert skill.content_hash == content_hash(PDF_SKILL)
    assert "Use pdfplumber" in skill.content


def test_full_text_order():
    skill = extract(PDF_SKILL, "pdf/SKILL.md")
    assert skill.full_text.splitlines() == [
        "pdf",
        "Extract text and tables from PDF files",
        "claude-code",
        "MIT",
        "anthropic",
        "1.2.0",
    ]


def test_slug_comes_from_directory_not_header():
    data = b"---\nname: Browser Automation\ndescription: Drive a browser\n---\n"
    skill = extract(data, "someone/browser-use/SKILL.md")
    assert skill.slug == "browser-use"
    assert skill.name == "Browser Automation"
    assert skill.relative_path == "someone/browser-use"


def test_no_front_matter_uses_first_heading():
    data = b"Intro line\n\n# Git Helper\n\nSome body text.\n"
    skill = extract(data, "git-helper/SKILL.md")
    assert skill.name == "Git Helper"
    assert skill.description == ""
    assert skill.raw_metadata == {}
    assert skill.body == data.decode()


def test_body_strips_header():
    skill = extract(PDF_SKILL, "pdf/SKILL.md")
    assert skill.body.lstrip().startswith("# PDF processing")
    assert "description:" not in skill.body


def test_lists_and_scalars_become_text():
    data = b"---\nname: x\ntags: [pdf, docs]\nbeta: true\npriority: 3\nempty:\n---\n"
    skill = extract(data, "x/SKILL.md")
    assert skill.raw_metadata["tags"] == "pdf, docs"
    assert skill.raw_metadata["beta"] == "true"
    assert skill.raw_metadata["priority"] == "3"
    assert skill.raw_metadata["empty"] == ""
    # Empty values are left out of the full text
    assert skill.full_text == "x\ntrue\n3\npdf, docs"


def test_deeply_nested_metadata_is_flattened():
    data = b"---\nname: x\nmetadata:\n  openclaw:\n    requires:\n      bins: [git]\n---\n"
    skill = extract(data, "x/SKILL.md")
    assert skill.raw_metadata == {"metadata.openclaw.requires.bins": "git"}


def test_duplicate_keys_keep_last_value():
    data = b"---\nname: first\nname: second\n---\n"
    assert extract(data, "x/SKILL.md").name == "second"


def test_unquoted_colon_in_description_is_tolerated():
    data = b"---\nname: pdf\ndescription: Use when: the user mentions PDFs\n---\nbody\n"
    skill = extract(data, "pdf/SKILL.md")
    assert skill.name == "pdf"
    assert skill.description == "Use when: the user mentions PDFs"


def test_utf8_bom_is_accepted():
    data = b"\xef\xbb\xbf---\nname: bom\n---\n"
    assert extract(data, "bom/SKILL.md").name == "bom"


def test_unterminated_header_fails():
    data = b"---\nname: broken\ndescription: never closed\n"
    with pytest.raises(ParseError) as exc:
        extract(data, "broken/SKILL.md")
    assert exc.value.path == "broken/SKILL.md"
    assert "unterminated" in exc.value.reason


def test_invalid_yaml_fails():
    data = b"---\n{unclosed: mapping\n---\n"
    with pytest.raises(ParseError):
        extract(data, "bad/SKILL.md")


def test_non_mapping_header_fails():
    data = b"---\n- one\n- two\n---\n"
    with pytest.raises(ParseError) as exc:
        extract(data, "list/SKILL.md")
    assert "mapping" in exc.value.reason


def test_binary_content_fails():
    with pytest.raises(ParseError):
        extract(b"\xff\xfe\x00garbage", "bin/SKILL.md")


def test_file_outside_skill_directory_fails():
    with pytest.raises(ParseError):
        extract(PDF_SKILL, "SKILL.md")


def test_empty_header():
    assert parse_header("---\n---\nbody\n") == {}


def test_split_front_matter_never_raises():
    assert split_front_matter_text("") == (None, "")
    assert split_front_matter_text("---\nopen") == (None, "---\nopen")
    header, body = split_front_matter_text("---\na: 1\n---\nrest\n")
    assert header == "a: 1\n"
    assert body == "rest\n"


def test_content_hash_tracks_bytes():
    assert content_hash(b"same") == content_hash(b"same")
    assert content_hash(b"same") != content_hash(b"same ")
