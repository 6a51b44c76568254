"""
Markdown section helpers shared by the writing and visuals stages.
"""

import re
from dataclasses import dataclass
from typing import List, Tuple

H2_PATTERN = re.compile(r"^##\s+(.+)$", re.MULTILINE)
SECTION_SEPARATOR = "\n\n---\n\n"


@dataclass
class Section:
    heading: str
    placeholder: str


def parse_sections(markdown: str, fallback_title: str) -> List[Section]:
    """
    Split markdown on H2 headings. Text before the first H2 is ignored.
    Without any H2, the whole text is one section titled ``fallback_title``.
    """
    matches = list(H2_PATTERN.finditer(markdown))
    if not matches:
        return [Section(heading=fallback_title or "Untitled", placeholder=markdown.strip())]

    sections = []
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(markdown)
        sections.append(Section(
            heading=match.group(1).strip(),
            placeholder=markdown[match.end():end].strip(),
        ))
    return sections


def join_sections(written: List[Tuple[str, str]]) -> str:
    """Assemble (heading, content) pairs in order."""
    return SECTION_SEPARATOR.join(f"## {heading}\n\n{content}" for heading, content in written)
