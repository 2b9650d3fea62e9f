from typing import Dict, Any, List

from commit2base.analyzers.base_analyzer import BaseFlagRule, CommitContext, register_rule
from commit2base.git.utils import is_config_file


@register_rule
class ConfigOnlyRule(BaseFlagRule):
    flag_type = "config_only"

    def get_description(self) -> str:
        return "Every touched file is a configuration file"

    def check(self, context: CommitContext) -> Dict[str, Any] | None:
        if context.filenames and all(is_config_file(f) for f in context.filenames):
            return {"files": list(context.filenames)}
        return None

    def get_test_cases(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": "json and yaml",
                "commit": {"filenames": ["appsettings.json", "deploy/app.YML"]},
                "expected": True,
            },
            {
                "name": "config plus code",
                "commit": {"filenames": ["package.json", "src/index.js"]},
                "expected": False,
            },
            {
                "name": "no files",
                "commit": {"filenames": []},
                "expected": False,
            },
        ]
