"""Light parsing of unified diff text.

Only what the commit heuristics need: files, hunks, and the added/removed/context
lines inside each hunk. Byte-exact reproduction of a provider's diff is not a goal.
"""

import hashlib
import re
from dataclasses import dataclass, field

HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@(.*)$")
DIFF_GIT_HEADER = re.compile(r"^diff --git a/(.+) b/(.+)$")

COMMENT_PATTERNS = [
    re.compile(r"^\s*//"),  # C-style single line
    re.compile(r"^\s*#"),  # Python/Shell/Ruby
    re.compile(r"^\s*'"),  # VB.NET
    re.compile(r"^\s*/\*"),  # block start
    re.compile(r"^\s*\*/"),  # block end
    re.compile(r"^\s*\*"),  # block middle
    re.compile(r"^\s*<!--"),  # HTML start
    re.compile(r"^\s*-->"),  # HTML end
    re.compile(r"^\s*--"),  # SQL
    re.compile(r"^\s*;"),  # Assembly/INI
    re.compile(r"^\s*%"),  # LaTeX
]

MIN_CHUNK_LINES = 5


@dataclass
class DiffLine:
    type: str  # add, remove or context
    content: str


@dataclass
class Hunk:
    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    header: str = ""
    lines: list[DiffLine] = field(default_factory=list)


@dataclass
class FileDiff:
    old_path: str | None
    new_path: str | None
    status: str = "modified"
    lines_added: int = 0
    lines_removed: int = 0
    hunks: list[Hunk] = field(default_factory=list)

    @property
    def path(self) -> str | None:
        return self.new_path or self.old_path


@dataclass
class CodeChunk:
    file: str | None
    start_line: int
    content: str
    hash: str


def parse_diff(diff_text: str | None) -> list[FileDiff]:
    if not diff_text:
        return []

    files = []
    current = None
    in_hunk = False

    for line in diff_text.split("\n"):
        if line.startswith("diff --git"):
            if current:
                files.append(current)
            match = DIFF_GIT_HEADER.match(line)
            current = FileDiff(
                old_path=match.group(1) if match else None,
                new_path=match.group(2) if match else None,
            )
            in_hunk = False
            continue

        if current is None:
            continue

        if line.startswith("new file mode"):
            current.status = "added"
            continue
        if line.startswith("deleted file mode"):
            current.status = "deleted"
            continue
        if line.startswith("rename from "):
            current.status = "renamed"
            current.old_path = line[len("rename from "):]
            continue
        if line.startswith("rename to "):
            current.new_path = line[len("rename to "):]
            continue

        if line.startswith("@@"):
            match = HUNK_HEADER.match(line)
            if match:
                in_hunk = True
                current.hunks.append(
                    Hunk(
                        old_start=int(match.group(1)),
                        old_lines=int(match.group(2) or 1),
                        new_start=int(match.group(3)),
                        new_lines=int(match.group(4) or 1),
                        header=(match.group(5) or "").strip(),
                    )
                )
            continue

        if not in_hunk or not current.hunks:
            continue

        hunk = current.hunks[-1]
        if line.startswith("+") and not line.startswith("+++"):
            current.lines_added += 1
            hunk.lines.append(DiffLine("add", line[1:]))
        elif line.startswith("-") and not line.startswith("---"):
            current.lines_removed += 1
            hunk.lines.append(DiffLine("remove", line[1:]))
        elif line.startswith(" ") or line == "":
            hunk.lines.append(DiffLine("context", line[1:]))

    if current:
        files.append(current)

    return files


def is_comment_line(content: str) -> bool:
    return any(pattern.match(content) for pattern in COMMENT_PATTERNS)


def is_comment_only_change(diff_text: str | None) -> bool:
    """True when every added/removed non-blank line is a comment.

    Needs at least one file with hunks; header-only diffs never qualify.
    """
    files = parse_diff(diff_text)
    if not any(f.hunks for f in files):
        return False

    for file in files:
        for hunk in file.hunks:
            for line in hunk.lines:
                if line.type == "context":
                    continue
                content = line.content.strip()
                if content and not is_comment_line(content):
                    return False
    return True


def chunk_hash(content: str) -> str:
    return hashlib.sha1(content.encode("utf-8")).hexdigest()


def extract_code_chunks(diff_text: str | None, min_lines: int = MIN_CHUNK_LINES) -> list[CodeChunk]:
    """Overlapping windows of min_lines consecutive non-blank added lines, per hunk"""
    chunks = []
    for file in parse_diff(diff_text):
        for hunk in file.hunks:
            added = [
                line.content.strip()
                for line in hunk.lines
                if line.type == "add" and line.content.strip()
            ]
            for start in range(len(added) - min_lines + 1):
                content = "\n".join(added[start:start + min_lines])
                chunks.append(CodeChunk(file.path, start, content, chunk_hash(content)))
    return chunks


def detect_copy_paste(diff_text: str | None, min_lines: int = MIN_CHUNK_LINES) -> list[dict]:
    """Groups of identical chunks that occur more than once across the commit"""
    groups: dict[str, list[CodeChunk]] = {}
    for chunk in extract_code_chunks(diff_text, min_lines):
        groups.setdefault(chunk.hash, []).append(chunk)

    duplicates = []
    for digest, group in groups.items():
        if len(group) > 1:
            files = []
            for chunk in group:
                if chunk.file not in files:
                    files.append(chunk.file)
            duplicates.append(
                {
                    "hash": digest,
                    "occurrences": len(group),
                    "files": files,
                    "sample": group[0].content,
                }
            )
    return duplicates


def added_lines(diff_text: str | None) -> list[str]:
    """Raw added lines of the diff, '+' marker stripped"""
    if not diff_text:
        return []
    return [
        line[1:]
        for line in diff_text.split("\n")
        if line.startswith("+") and not line.startswith("+++")
    ]
