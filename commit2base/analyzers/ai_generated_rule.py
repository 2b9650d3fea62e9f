import re
from typing import Dict, Any, List

from commit2base.analyzers.base_analyzer import BaseFlagRule, CommitContext, register_rule
from commit2base.git.diff import added_lines

AI_SCORE_THRESHOLD = 0.6  # strict

VERBOSE_COMMENTS = re.compile(
    r"(?://|#)\s*(This|Here|The following|We|First|Next|Finally|Note:|TODO:)", re.IGNORECASE
)
EXPLANATORY_COMMENTS = re.compile(r"(?://|#)\s*\w+\s+(is|are|will|should|must|can)\s+", re.IGNORECASE)
GENERIC_NAMES = re.compile(r"\b(data|result|response|value|item|element|temp|tmp)\d*\b", re.IGNORECASE)
BOILERPLATE = re.compile(
    r"(/\*\*[\s\S]*?\*/\s*)?(?:public|private|protected)?\s*(?:static\s+)?(?:async\s+)?"
    r"\w+\s+\w+\s*\([^)]*\)\s*(?::\s*\w+)?\s*\{"
)
DOC_COMMENTS = re.compile(r"/\*\*[\s\S]*?\*/|\"\"\"[\s\S]*?\"\"\"")
FUNCTIONS = re.compile(r"function\s+\w+|=>\s*\{|\w+\s*\([^)]*\)\s*\{|\bdef\s+\w+")

# Signal thresholds and score weights
VERBOSE_COMMENT_MIN, VERBOSE_COMMENT_WEIGHT = 3, 0.2
EXPLANATORY_COMMENT_MIN, EXPLANATORY_COMMENT_WEIGHT = 2, 0.2
GENERIC_NAME_MIN, GENERIC_NAME_WEIGHT = 5, 0.15
UNIFORM_INDENT_MIN_LINES, UNIFORM_INDENT_MAX_WIDTHS, UNIFORM_INDENT_WEIGHT = 10, 3, 0.1
BOILERPLATE_MIN, BOILERPLATE_WEIGHT = 3, 0.15
DOC_RATIO_MIN, DOC_RATIO_WEIGHT = 0.8, 0.2


def ai_signals(diff_text: str | None) -> tuple[float, list[str]]:
    """Score in [0, 1] plus the names of the signals that contributed"""
    lines = added_lines(diff_text)
    if not lines:
        return 0.0, []

    content = "\n".join(lines)
    score = 0.0
    signals = []

    if len(VERBOSE_COMMENTS.findall(content)) > VERBOSE_COMMENT_MIN:
        score += VERBOSE_COMMENT_WEIGHT
        signals.append("Verbose explanatory comments")

    if len(EXPLANATORY_COMMENTS.findall(content)) > EXPLANATORY_COMMENT_MIN:
        score += EXPLANATORY_COMMENT_WEIGHT
        signals.append("Comments explaining obvious code")

    if len(GENERIC_NAMES.findall(content)) > GENERIC_NAME_MIN:
        score += GENERIC_NAME_WEIGHT
        signals.append("Generic variable names")

    non_blank = [line for line in lines if line.strip()]
    if len(non_blank) >= UNIFORM_INDENT_MIN_LINES:
        widths = {len(line) - len(line.lstrip()) for line in non_blank}
        if len(widths) <= UNIFORM_INDENT_MAX_WIDTHS:
            score += UNIFORM_INDENT_WEIGHT
            signals.append("Uniform indentation")

    if len(BOILERPLATE.findall(content)) > BOILERPLATE_MIN:
        score += BOILERPLATE_WEIGHT
        signals.append("Boilerplate signatures")

    function_count = len(FUNCTIONS.findall(content))
    if function_count and len(DOC_COMMENTS.findall(content)) / function_count > DOC_RATIO_MIN:
        score += DOC_RATIO_WEIGHT
        signals.append("Docstring on nearly every function")

    return min(score, 1.0), signals


_GENERATED = [
    "// This is the loader for the data",
    "// Here is where the result gets checked",
    "// This is needed before the value is read",
    "// We can store the item now",
    "const data1 = load();",
    "const result = check(data1);",
    "const value = read(result);",
    "const item = store(value);",
    "const response = finish(item);",
    "const temp = response;",
    "send(temp);",
]


def _diff(lines: list[str]) -> str:
    body = "".join(f"+{line}\n" for line in lines)
    return (
        "diff --git a/src/loader.js b/src/loader.js\n"
        "--- a/src/loader.js\n"
        "+++ b/src/loader.js\n"
        f"@@ -0,0 +1,{len(lines)} @@\n"
        f"{body}"
    )


@register_rule
class AIGeneratedRule(BaseFlagRule):
    flag_type = "possible_ai_generated"
    requires_diff = True

    def get_description(self) -> str:
        return "Weighted score of comment, naming and formatting signals above 0.6"

    def check(self, context: CommitContext) -> Dict[str, Any] | None:
        score, signals = ai_signals(context.diff_text)
        if score > AI_SCORE_THRESHOLD:
            return {"confidence": round(score * 100), "indicators": signals}
        return None

    def get_test_cases(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": "chatty comments and generic names",
                "commit": {"diff_text": _diff(_GENERATED)},
                "expected": True,
            },
            {
                "name": "plain code",
                "commit": {"diff_text": _diff(["total = price * quantity", "print(total)"])},
                "expected": False,
            },
        ]
