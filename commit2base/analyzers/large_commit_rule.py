from typing import Dict, Any, List

from commit2base.analyzers.base_analyzer import BaseFlagRule, CommitContext, register_rule

LARGE_COMMIT_MIN_LINES = 500  # strict: more than this many changed lines
LARGE_COMMIT_MIN_FILES = 20  # strict: more than this many files


@register_rule
class LargeCommitRule(BaseFlagRule):
    flag_type = "large_commit"

    def get_description(self) -> str:
        return "More than 500 changed lines or more than 20 files"

    def check(self, context: CommitContext) -> Dict[str, Any] | None:
        total = context.total_lines
        if total > LARGE_COMMIT_MIN_LINES or (context.files_changed or 0) > LARGE_COMMIT_MIN_FILES:
            return {"lines_changed": total, "files_changed": context.files_changed}
        return None

    def get_test_cases(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": "600 lines across 25 files",
                "commit": {"lines_added": 550, "lines_removed": 50, "files_changed": 25},
                "expected": True,
            },
            {
                "name": "exactly 500 lines is not large",
                "commit": {"lines_added": 400, "lines_removed": 100, "files_changed": 3},
                "expected": False,
            },
            {
                "name": "501 lines",
                "commit": {"lines_added": 501, "files_changed": 1},
                "expected": True,
            },
            {
                "name": "21 files, few lines",
                "commit": {"lines_added": 21, "files_changed": 21},
                "expected": True,
            },
            {
                "name": "exactly 20 files",
                "commit": {"lines_added": 40, "files_changed": 20},
                "expected": False,
            },
        ]
