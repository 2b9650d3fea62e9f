from commit2base.analyzers.base_analyzer import (
    RULE_REGISTRY,
    BaseFlagRule,
    CommitContext,
    Flag,
    load_and_register_rules,
)
from commit2base.analyzers.small_vague_commit_rule import SmallVagueCommitRule, is_vague_message
from commit2base.analyzers.large_commit_rule import LargeCommitRule
from commit2base.analyzers.config_only_rule import ConfigOnlyRule
from commit2base.analyzers.comment_only_rule import CommentOnlyRule
from commit2base.analyzers.copy_paste_rule import CopyPasteRule
from commit2base.analyzers.ai_generated_rule import AIGeneratedRule, ai_signals
from commit2base.analyzers.commit_analyzer import analyze_commit


__all__ = [
    "RULE_REGISTRY",
    "load_and_register_rules",
    "BaseFlagRule",
    "CommitContext",
    "Flag",
    "analyze_commit",
    "is_vague_message",
    "ai_signals",
    "SmallVagueCommitRule",
    "LargeCommitRule",
    "ConfigOnlyRule",
    "CommentOnlyRule",
    "CopyPasteRule",
    "AIGeneratedRule",
]
