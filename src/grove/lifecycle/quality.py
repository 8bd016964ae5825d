"""Shallow quality gate for agent-authored documents.

Two heuristics:

- *too thin*: shorter than ``min_document_length`` and no markdown header;
- *boilerplate*: the document opens with conversational preamble or a
  completion claim ("Sure!", "I've completed ...").  Only the first
  ``boilerplate_window`` characters are searched.

A rejected document is kept as a plain comment instead of a version.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from grove.config import DocumentPolicy

_HEADER_RE = re.compile(r"^#{1,6}\s+\S", re.MULTILINE)


@dataclass
class QualityVerdict:
    accepted: bool
    reason: str = ""


class QualityGate:
    def __init__(self, policy: DocumentPolicy | None = None):
        self.policy = policy or DocumentPolicy()
        self._boilerplate = [
            re.compile(p, re.IGNORECASE | re.MULTILINE) for p in self.policy.boilerplate_patterns
        ]

    def check(self, content: str) -> QualityVerdict:
        text = content.strip()
        if len(text) < self.policy.min_document_length and not _HEADER_RE.search(text):
            return QualityVerdict(
                False,
                f"too short ({len(text)} chars) and has no markdown headers",
            )

        opening = text[: self.policy.boilerplate_window]
        for pattern in self._boilerplate:
            if pattern.search(opening):
                return QualityVerdict(False, f"opens with conversational boilerplate ({pattern.pattern})")

        return QualityVerdict(True)
