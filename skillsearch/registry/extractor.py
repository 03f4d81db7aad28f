"""Metadata extractor — turns a SKILL.md file into a Skill record.

A skill file starts with an optional YAML front-matter block::

    ---
    name: pdf
    description: Read and extract PDF content
    compatibility: claude-code
    metadata:
      author: someone
      version: 1.2.0
    ---

    # PDF

    Free-form body...

Parsing rules:

- The block opens with a ``---`` line on the first line of the file and
  closes with the next ``---`` line. An unterminated block is an error.
- The block is read with ``yaml.safe_load``. Duplicate keys keep the last
  value. When YAML rejects the block but every top-level line is a plain
  ``key: value`` pair (unquoted colons inside descriptions are common in
  the wild), the lines are read literally instead.
- ``name``, ``description`` and ``compatibility`` are strings. Every other
  key lands in ``raw_metadata``; nested mappings are flattened to any depth
  with dotted keys (``metadata.author``), lists are joined with ``", "``.
- A missing ``name`` falls back to the first ``# `` heading of the body.
- ``slug`` is the name of the directory holding the file, never a header
  value.
- ``full_text`` is name, description, compatibility, then the metadata
  values in key order, one per line, skipping empty values.
"""

from __future__ import annotations

import hashlib
import json
import re
import time
from pathlib import PurePosixPath
from typing import Any

import yaml

from skillsearch.errors import ParseError
from skillsearch.registry.models import Skill

SKILL_FILENAME = "SKILL.md"
FRONT_MATTER_DELIMITER = "---"

_CORE_FIELDS = ("name", "description", "compatibility")
_PLAIN_LINE = re.compile(r"^([A-Za-z_][\w.-]*)\s*:(?:\s+(.*))?$")


def extract(file_content: bytes, path: str) -> Skill:
    """Parse a skill definition.

    Args:
        file_content: Raw bytes of the ``SKILL.md`` file.
        path: File path relative to the registry subpath, ``/``-separated
            (e.g. ``pdf/SKILL.md`` or ``someone/pdf/SKILL.md``).

    Returns:
        A Skill with identity, text and hash fields filled in. The caller
        sets ``registry_id``, ``trusted`` and ``star_count``.

    Raises:
        ParseError: If the header block is malformed or the file is not text.
    """
    try:
        text = file_content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ParseError(path, f"not valid UTF-8 ({e.reason})") from e

    skill_dir = PurePosixPath(path).parent
    slug = skill_dir.name
    if not slug:
        raise ParseError(path, "skill file must live in a skill directory")

    header = parse_header(text, path)
    _, body = split_front_matter_text(text)

    name = _to_text(header.get("name"))
    description = _to_text(header.get("description"))
    compatibility = _to_text(header.get("compatibility"))

    metadata: dict[str, str] = {}
    for key, value in header.items():
        if key in _CORE_FIELDS:
            continue
        if isinstance(value, dict):
            _flatten(value, key, metadata)
        else:
            metadata[key] = _to_text(value)

    if not name:
        name = _first_heading(body)

    return Skill(
        slug=slug,
        name=name,
        description=description,
        relative_path=str(skill_dir),
        raw_metadata=metadata,
        compatibility=compatibility,
        content=text,
        full_text=build_full_text(name, description, compatibility, metadata),
        content_hash=content_hash(file_content),
        updated_at=int(time.time()),
    )


def content_hash(file_content: bytes) -> str:
    return hashlib.sha256(file_content).hexdigest()


def build_full_text(
    name: str, description: str, compatibility: str, metadata: dict[str, str]
) -> str:
    parts = [name, description, compatibility] + [metadata[k] for k in sorted(metadata)]
    return "\n".join(p for p in parts if p)


def split_front_matter_text(text: str) -> tuple[str | None, str]:
    """Split text into (header_text, body). Never raises.

    Returns ``(None, text)`` when there is no complete front-matter block.
    """
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != FRONT_MATTER_DELIMITER:
        return None, text
    for i in range(1, len(lines)):
        if lines[i].strip() == FRONT_MATTER_DELIMITER:
            return "".join(lines[1:i]), "".join(lines[i + 1 :])
    return None, text


def parse_header(text: str, path: str = "") -> dict[str, Any]:
    """Return the front-matter mapping, ``{}`` when the file has none."""
    header_text, _ = split_front_matter_text(text)
    if header_text is None:
        first_line = text.splitlines()[:1]
        if first_line and first_line[0].strip() == FRONT_MATTER_DELIMITER:
            raise ParseError(path, "unterminated front-matter block")
        return {}

    try:
        data = yaml.safe_load(header_text)
    except yaml.YAMLError as e:
        data = _parse_plain_lines(header_text)
        if data is None:
            raise ParseError(path, f"invalid front-matter: {_yaml_problem(e)}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ParseError(path, "front-matter must be a mapping of keys to values")
    return {str(k): v for k, v in data.items()}


def _parse_plain_lines(header_text: str) -> dict[str, str] | None:
    """Read ``key: value`` lines literally. None if any line is something else."""
    result: dict[str, str] = {}
    for line in header_text.splitlines():
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        match = _PLAIN_LINE.match(line)
        if not match:
            return None
        result[match.group(1)] = _unquote((match.group(2) or "").strip())
    return result


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def _yaml_problem(error: yaml.YAMLError) -> str:
    problem = getattr(error, "problem", None) or str(error)
    mark = getattr(error, "problem_mark", None)
    if mark is not None:
        return f"{problem} (line {mark.line + 2})"
    return problem


def _flatten(mapping: dict, prefix: str, out: dict[str, str]) -> None:
    for key, value in mapping.items():
        dotted = f"{prefix}.{key}"
        if isinstance(value, dict):
            _flatten(value, dotted, out)
        else:
            out[dotted] = _to_text(value)


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (list, tuple)):
        return ", ".join(t for t in (_to_text(v) for v in value) if t)
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def _first_heading(body: str) -> str:
    for line in body.splitlines():
        if line.startswith("# "):
            return line[2:].strip()
    return ""
