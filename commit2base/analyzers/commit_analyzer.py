from commit2base.analyzers.base_analyzer import (
    BaseFlagRule,
    CommitContext,
    Flag,
    load_and_register_rules,
)
from commit2base.config import LOGGER_COMMIT2BASE, get_logger

logger = get_logger(LOGGER_COMMIT2BASE)


def analyze_commit(
    commit: CommitContext,
    diff_text: str | None = None,
    rules: list[BaseFlagRule] | None = None,
) -> list[Flag]:
    """Run every flag rule over one commit.

    Pure: nothing is persisted. A diff passed here overrides the one on the context;
    diff-based rules are skipped when neither is present. Each flag type appears at
    most once in the result.
    """
    if diff_text is not None:
        commit = CommitContext(
            message=commit.message,
            lines_added=commit.lines_added,
            lines_removed=commit.lines_removed,
            files_changed=commit.files_changed,
            filenames=list(commit.filenames),
            diff_text=diff_text,
        )

    flags = []
    seen = set()
    for rule in rules if rules is not None else load_and_register_rules():
        if rule.flag_type in seen:
            continue
        flag = rule.analyze(commit)
        if flag is not None:
            seen.add(flag.type)
            flags.append(flag)
    return flags
