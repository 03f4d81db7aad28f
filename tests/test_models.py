"""Tests for registry, skill and result models."""

from skillsearch.registry.extractor import extract
from skillsearch.registry.models import (
    Registry,
    Skill,
    SkillResult,
    TrustLevel,
    make_doc_id,
    split_doc_id,
)


def test_doc_id_round_trip():
    assert make_doc_id("anthropic", "pdf") == "anthropic:pdf"
    assert split_doc_id("anthropic:pdf") == ("anthropic", "pdf")


def test_only_official_registries_are_trusted():
    assert Registry(id="a", remote_location="x", trust_level=TrustLevel.OFFICIAL).trusted
    assert not Registry(id="b", remote_location="x", trust_level=TrustLevel.COMMUNITY).trusted
    assert not Registry(id="c", remote_location="x", trust_level=TrustLevel.EXPERIMENTAL).trusted


def test_skill_url():
    reg = Registry(
        id="openai",
        remote_location="https://github.com/openai/skills.git",
        subpath="skills/.curated",
    )
    assert reg.browse_url == "https://github.com/openai/skills/tree/main"
    assert reg.skill_url("pdf") == "https://github.com/openai/skills/tree/main/skills/.curated/pdf"


def test_skill_url_without_subpath():
    reg = Registry(id="r", remote_location="https://github.com/o/r/", branch="dev")
    assert reg.skill_url("owner/tool") == "https://github.com/o/r/tree/dev/owner/tool"


def test_document_fields():
    skill = Skill(
        slug="browser-use",
        name="Browser Automation",
        description="Drive a headless browser",
        registry_id="clawdhub",
        raw_metadata={"tags": "web", "author": "someone"},
        compatibility="claude-code",
        content="---\nname: Browser Automation\n---\nClick things.\n",
        star_count=7,
    )
    doc = skill.to_document()

    assert doc.doc_id == "clawdhub:browser-use"
    assert doc.registry_id == "clawdhub"
    assert doc.text_fields["name"] == "Browser Automation browser-use"
    assert doc.text_fields["description"] == "Drive a headless browser"
    assert doc.text_fields["metadata"] == "claude-code\nsomeone\nweb"
    assert doc.text_fields["body"] == "Click things.\n"
    assert doc.boost_factors == (False, 7)


def test_document_name_does_not_repeat_slug():
    skill = Skill(slug="pdf", name="PDF tools", registry_id="anthropic")
    assert skill.to_document().text_fields["name"] == "PDF tools"


def test_result_to_dict():
    skill = Skill(
        slug="pdf",
        name="pdf",
        description="PDF files",
        registry_id="anthropic",
        star_count=12,
        trusted=True,
    )
    result = SkillResult(skill=skill, url="https://example.com/pdf", score=1.23456789)

    assert result.to_dict() == {
        "slug": "pdf",
        "name": "pdf",
        "registry": "anthropic",
        "description": "PDF files",
        "github_url": "https://example.com/pdf",
        "stars": 12,
        "trusted": True,
        "score": 1.234568,
    }
    assert SkillResult(skill=skill, url="u").to_dict()["score"] is None


def test_document_metadata_matches_stored_full_text():
    skill = extract(
        b"---\nname: pdf\ndescription: Read PDFs\ncompatibility: claude-code\n"
        b"metadata:\n  author: someone\n  version: 1.2.0\n---\n\n# pdf\n",
        "pdf/SKILL.md",
    )
    doc = skill.to_document()

    assert skill.full_text == "\n".join(["pdf", "Read PDFs", doc.text_fields["metadata"]])
    assert doc.text_fields["metadata"] == "claude-code\nsomeone\n1.2.0"
