from typing import Dict, Any, List

from commit2base.analyzers.base_analyzer import BaseFlagRule, CommitContext, register_rule
from commit2base.git.diff import MIN_CHUNK_LINES, detect_copy_paste

_BLOCK = ["total = 0", "for row in rows:", "total += row.amount", "if total > limit:", "raise LimitExceeded(total)"]


def _added_hunk(path: str, lines: list[str]) -> str:
    body = "".join(f"+{line}\n" for line in lines)
    return (
        f"diff --git a/{path} b/{path}\n"
        f"--- a/{path}\n"
        f"+++ b/{path}\n"
        f"@@ -0,0 +1,{len(lines)} @@\n"
        f"{body}"
    )


@register_rule
class CopyPasteRule(BaseFlagRule):
    """Identical blocks of added lines appearing more than once in one commit"""

    flag_type = "possible_copy_paste"
    requires_diff = True

    def __init__(self, min_lines: int = MIN_CHUNK_LINES):
        self.min_lines = min_lines

    def get_description(self) -> str:
        return "Repeated windows of 5 or more consecutive added lines"

    def check(self, context: CommitContext) -> Dict[str, Any] | None:
        duplicates = detect_copy_paste(context.diff_text, self.min_lines)
        if not duplicates:
            return None

        files = []
        for duplicate in duplicates:
            for path in duplicate["files"]:
                if path not in files:
                    files.append(path)
        return {
            "duplicate_blocks": len(duplicates),
            "occurrences": sum(d["occurrences"] for d in duplicates),
            "files": files,
        }

    def get_test_cases(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": "same block in two files",
                "commit": {
                    "diff_text": _added_hunk("billing/a.py", _BLOCK) + _added_hunk("billing/b.py", _BLOCK)
                },
                "expected": True,
            },
            {
                "name": "four repeated lines are below the window",
                "commit": {
                    "diff_text": _added_hunk("a.py", _BLOCK[:4]) + _added_hunk("b.py", _BLOCK[:4])
                },
                "expected": False,
            },
            {
                "name": "distinct lines",
                "commit": {"diff_text": _added_hunk("a.py", [f"value_{i} = {i}" for i in range(12)])},
                "expected": False,
            },
        ]
