from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List
import importlib

from commit2base.config import LOGGER_COMMIT2BASE, get_logger

logger = get_logger(LOGGER_COMMIT2BASE)

# Flag rule registry: class name -> rule class
RULE_REGISTRY = {}


@dataclass
class Flag:
    type: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"type": self.type, "details": self.details}


@dataclass
class CommitContext:
    """What a flag rule may look at: commit metadata, touched files and optional diff text"""

    message: str = ""
    lines_added: int = 0
    lines_removed: int = 0
    files_changed: int = 0
    filenames: List[str] = field(default_factory=list)
    diff_text: str | None = None

    @property
    def total_lines(self) -> int:
        return (self.lines_added or 0) + (self.lines_removed or 0)

    @property
    def first_line(self) -> str:
        return (self.message or "").split("\n")[0].strip()

    @classmethod
    def from_remote(cls, remote, details, diff_text: str | None = None) -> "CommitContext":
        """Build from a listed commit plus its fetched details"""
        return cls(
            message=remote.message or "",
            lines_added=details.lines_added,
            lines_removed=details.lines_removed,
            files_changed=details.files_changed,
            filenames=[f.filename for f in details.files],
            diff_text=diff_text,
        )

    @classmethod
    def from_row(cls, commit, files, diff_text: str | None = None) -> "CommitContext":
        """Build from a stored Commit row and its CommitFile rows"""
        return cls(
            message=commit.message or "",
            lines_added=commit.lines_added or 0,
            lines_removed=commit.lines_removed or 0,
            files_changed=commit.files_changed or 0,
            filenames=[f.filename for f in files],
            diff_text=diff_text,
        )


def register_rule(rule_class):
    RULE_REGISTRY[rule_class.__name__] = rule_class
    return rule_class


def load_and_register_rules(rule_names: List[str] | None = None) -> List["BaseFlagRule"]:
    """Instantiate the named rules, every registered rule when no names are given.

    Names are looked up in the registry first, then as attributes of commit2base.analyzers.
    Unknown names are logged and skipped.
    """
    module = importlib.import_module("commit2base.analyzers")
    if not rule_names:
        return [rule_class() for rule_class in RULE_REGISTRY.values()]

    rules = []
    for class_name in rule_names:
        rule_class = RULE_REGISTRY.get(class_name) or getattr(module, class_name, None)
        if rule_class is None:
            logger.warning(f"Flag rule {class_name} load failed: not found")
            continue
        rules.append(rule_class())
    return rules


class BaseFlagRule(ABC):
    """
    Base class of every commit flag rule.

    Rules are independent of each other: each looks at a CommitContext and returns at
    most one Flag of its own type.
    """

    flag_type: str = ""
    requires_diff: bool = False

    @abstractmethod
    def get_description(self) -> str:
        """
        Describe what the rule detects

        Returns:
            str: description text
        """

    @abstractmethod
    def get_test_cases(self) -> List[Dict[str, Any]]:
        """
        Test cases shipped with the rule

        Returns:
            List[Dict[str, Any]]: each case contains:
                - name: case name
                - commit: keyword arguments for CommitContext
                - expected: whether the flag must fire
        """

    @abstractmethod
    def check(self, context: CommitContext) -> Dict[str, Any] | None:
        """Return the flag details when the rule fires, None otherwise"""

    def analyze(self, context: CommitContext) -> Flag | None:
        if self.requires_diff and not context.diff_text:
            return None
        details = self.check(context)
        if details is None:
            return None
        return Flag(self.flag_type, details)
