from typing import Dict, Any, List

from commit2base.analyzers.base_analyzer import BaseFlagRule, CommitContext, register_rule
from commit2base.git.diff import is_comment_only_change


@register_rule
class CommentOnlyRule(BaseFlagRule):
    flag_type = "comment_only"
    requires_diff = True

    def get_description(self) -> str:
        return "Every added or removed line is a comment"

    def check(self, context: CommitContext) -> Dict[str, Any] | None:
        if is_comment_only_change(context.diff_text):
            return {"message": "All changes appear to be comments"}
        return None

    def get_test_cases(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": "comments added and removed",
                "commit": {
                    "diff_text": (
                        "diff --git a/app.py b/app.py\n"
                        "--- a/app.py\n"
                        "+++ b/app.py\n"
                        "@@ -1,2 +1,2 @@\n"
                        " import os\n"
                        "-# read config\n"
                        "+# Read settings from the environment\n"
                        "+    // trailing note\n"
                    )
                },
                "expected": True,
            },
            {
                "name": "code change",
                "commit": {
                    "diff_text": (
                        "diff --git a/app.py b/app.py\n"
                        "--- a/app.py\n"
                        "+++ b/app.py\n"
                        "@@ -1 +1,2 @@\n"
                        "+# comment\n"
                        "+x = 1\n"
                    )
                },
                "expected": False,
            },
            {
                "name": "headers without hunks",
                "commit": {
                    "diff_text": (
                        "diff --git a/README.md b/README.md\n"
                        "--- a/README.md\n"
                        "+++ b/README.md\n"
                    )
                },
                "expected": False,
            },
            {
                "name": "no diff",
                "commit": {"diff_text": None},
                "expected": False,
            },
        ]
