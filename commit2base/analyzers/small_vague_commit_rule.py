import re
from typing import Dict, Any, List

from commit2base.analyzers.base_analyzer import BaseFlagRule, CommitContext, register_rule

SMALL_COMMIT_MAX_LINES = 10  # strict: fewer than this many changed lines
MIN_MESSAGE_LENGTH = 10
SINGLE_WORD_MAX_LENGTH = 20

# Low-information commit messages
VAGUE_PATTERNS = [
    re.compile(r"^fix$", re.IGNORECASE),
    re.compile(r"^update$", re.IGNORECASE),
    re.compile(r"^changes?$", re.IGNORECASE),
    re.compile(r"^wip$", re.IGNORECASE),
    re.compile(r"^test$", re.IGNORECASE),
    re.compile(r"^asdf$", re.IGNORECASE),
    re.compile(r"^misc$", re.IGNORECASE),
    re.compile(r"^stuff$", re.IGNORECASE),
    re.compile(r"^done$", re.IGNORECASE),
    re.compile(r"^commit$", re.IGNORECASE),
    re.compile(r"^save$", re.IGNORECASE),
    re.compile(r"^\.+$"),
    re.compile(r"^-+$"),
    re.compile(r"^\w$"),  # single character
]


def is_vague_message(message: str | None) -> bool:
    if not message or len(message) < MIN_MESSAGE_LENGTH:
        return True

    stripped = message.strip()
    if any(pattern.match(stripped) for pattern in VAGUE_PATTERNS):
        return True

    # Single word
    return not re.search(r"\s", stripped) and len(message) < SINGLE_WORD_MAX_LENGTH


@register_rule
class SmallVagueCommitRule(BaseFlagRule):
    """Tiny commit whose message says nothing"""

    flag_type = "small_vague_commit"

    def get_description(self) -> str:
        return "Fewer than 10 changed lines and a vague first message line"

    def check(self, context: CommitContext) -> Dict[str, Any] | None:
        total = context.total_lines
        first_line = context.first_line
        if total < SMALL_COMMIT_MAX_LINES and is_vague_message(first_line):
            return {
                "lines_changed": total,
                "message_length": len(first_line),
                "message": first_line,
            }
        return None

    def get_test_cases(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": "fix with 3 lines",
                "commit": {"message": "fix", "lines_added": 2, "lines_removed": 1},
                "expected": True,
            },
            {
                "name": "exactly 10 lines is not small",
                "commit": {"message": "fix", "lines_added": 6, "lines_removed": 4},
                "expected": False,
            },
            {
                "name": "descriptive message",
                "commit": {"message": "Improve error messages for login form", "lines_added": 2},
                "expected": False,
            },
            {
                "name": "single word under 20 characters",
                "commit": {"message": "Refactoring\n\nlonger body text here", "lines_added": 4},
                "expected": True,
            },
            {
                "name": "repeated punctuation",
                "commit": {"message": "...", "lines_removed": 1},
                "expected": True,
            },
        ]
