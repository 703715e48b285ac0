"""Content hint rules for the word-processor prompt.

A hint tells the model what kind of value a template paragraph expects
(an identifier, a name, a date...). Rules are matched in order against the
paragraph text with case-insensitive substring search; the first rule with
a matching keyword wins.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HintRule:
    """One ordered rule of the hint table."""

    keywords: tuple[str, ...]
    hint: str

    def matches(self, text: str) -> bool:
        lowered = text.lower()
        return any(keyword.lower() in lowered for keyword in self.keywords)


MONTH_KEYWORDS = (
    "januari", "februari", "maret", "april", "mei", "juni", "juli",
    "agustus", "september", "oktober", "november", "desember",
)

DEFAULT_HINT_RULES: tuple[HintRule, ...] = (
    HintRule(keywords=("nim",), hint="(identifier: student/registration number)"),
    HintRule(keywords=("nama",), hint="(name: full name of a person)"),
    HintRule(keywords=("tanggal",) + MONTH_KEYWORDS, hint="(date: a calendar date)"),
    HintRule(keywords=("pembimbing", "dosen"), hint="(supervisor: name of the supervising lecturer)"),
)


class HintRuleTable:
    """Ordered, replaceable table of HintRule entries."""

    def __init__(self, rules: tuple[HintRule, ...] | list[HintRule] = DEFAULT_HINT_RULES) -> None:
        self._rules = tuple(rules)

    @property
    def rules(self) -> tuple[HintRule, ...]:
        return self._rules

    def hint_for(self, text: str) -> str:
        """Return the hint of the first matching rule, or an empty string."""
        for rule in self._rules:
            if rule.matches(text):
                return rule.hint
        return ""

    @classmethod
    def from_json(cls, path: Path | str) -> "HintRuleTable":
        """Load rules from ``[{"keywords": [...], "hint": "..."}, ...]``.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ValueError: If the file is not a list of rule objects.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Hint rules file not found: {path}")

        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, list):
            raise ValueError(f"Hint rules file must contain a JSON list: {path}")

        rules = []
        for position, item in enumerate(data):
            keywords = item.get("keywords") if isinstance(item, dict) else None
            hint = item.get("hint") if isinstance(item, dict) else None
            if not keywords or not isinstance(keywords, list) or not isinstance(hint, str):
                raise ValueError(f"Invalid hint rule at position {position} in {path}")
            rules.append(HintRule(keywords=tuple(str(k) for k in keywords), hint=hint))

        logger.info(f"Loaded {len(rules)} hint rules from {path}")
        return cls(rules)
