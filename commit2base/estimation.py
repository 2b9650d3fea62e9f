"""Heuristic time estimates for a set of commits.

None of these numbers measure time worked. They are rough approximations from commit
timestamps, changed lines and touched files, meant to be compared with each other.

Commits are plain dicts with ``developer_id``, ``author_email``, ``committed_at``
(datetime), ``lines_added``, ``lines_removed``, ``files_changed``, an optional ``files``
list of ``{filename, lines_added, lines_removed, is_excluded}`` and an optional ``diff``.
"""

import re
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from commit2base.database.connection import Database
from commit2base.database.model import Commit
from commit2base.git.utils import is_config_file, is_test_file

LINES_PER_HOUR = 30
TEST_SPEEDUP = 1.5
CONFIG_SPEEDUP = 3
SESSION_GAP_HOURS = 2
HOURS_PER_SESSION = 2
MAX_GAP_HOURS = 2

SESSION_WEIGHT = 0.4
GAPS_WEIGHT = 0.3
LINES_WEIGHT = 0.3

COMPLEXITY_INDICATORS = [
    re.compile(r"if\s*\("),
    re.compile(r"else\s*\{"),
    re.compile(r"for\s*\("),
    re.compile(r"while\s*\("),
    re.compile(r"switch\s*\("),
    re.compile(r"try\s*\{"),
    re.compile(r"catch\s*\("),
    re.compile(r"\?\s*.*\s*:"),  # ternary
]


def _by_developer(commits: list[dict]) -> dict:
    groups = {}
    for commit in commits:
        key = commit.get("developer_id") or commit.get("author_email")
        groups.setdefault(key, []).append(commit)
    for group in groups.values():
        group.sort(key=lambda c: c["committed_at"])
    return groups


def _gap_hours(previous: dict, current: dict) -> float:
    return (current["committed_at"] - previous["committed_at"]).total_seconds() / 3600


def estimate_by_session(commits: list[dict]) -> dict:
    """A new session starts after more than SESSION_GAP_HOURS without a commit"""
    if not commits:
        return {"hours": 0, "sessions": 0}

    sessions = 0
    for group in _by_developer(commits).values():
        sessions += 1
        for previous, current in zip(group, group[1:]):
            if _gap_hours(previous, current) > SESSION_GAP_HOURS:
                sessions += 1

    return {"hours": sessions * HOURS_PER_SESSION, "sessions": sessions}


def estimate_by_gaps(commits: list[dict]) -> dict:
    """Sum of the time between consecutive commits, each gap capped at MAX_GAP_HOURS"""
    if len(commits) < 2:
        return {"hours": 0, "gaps": []}

    total = 0.0
    gaps = []
    for developer, group in _by_developer(commits).items():
        for previous, current in zip(group, group[1:]):
            hours = _gap_hours(previous, current)
            capped = min(hours, MAX_GAP_HOURS)
            total += capped
            gaps.append(
                {
                    "developer": developer,
                    "from": previous["committed_at"],
                    "to": current["committed_at"],
                    "hours": capped,
                    "was_exceeded": hours > MAX_GAP_HOURS,
                }
            )

    return {"hours": total, "gaps": gaps}


def estimate_by_lines(commits: list[dict], adjust_for_file_types: bool = True) -> dict:
    if not commits:
        return {"hours": 0, "total_lines": 0, "breakdown": {}}

    total_lines = 0
    breakdown = {"code": 0, "tests": 0, "config": 0}

    for commit in commits:
        added = commit.get("lines_added") or 0
        removed = commit.get("lines_removed") or 0
        files = commit.get("files")

        if files:
            for f in files:
                if f.get("is_excluded"):
                    continue
                lines = (f.get("lines_added") or 0) + (f.get("lines_removed") or 0)
                if is_test_file(f["filename"]):
                    breakdown["tests"] += lines
                elif is_config_file(f["filename"]):
                    breakdown["config"] += lines
                else:
                    breakdown["code"] += lines
        else:
            breakdown["code"] += abs(added - removed)

        total_lines += added + removed

    if adjust_for_file_types:
        hours = (
            breakdown["code"] / LINES_PER_HOUR
            + breakdown["tests"] / (LINES_PER_HOUR * TEST_SPEEDUP)
            + breakdown["config"] / (LINES_PER_HOUR * CONFIG_SPEEDUP)
        )
    else:
        hours = total_lines / LINES_PER_HOUR

    return {"hours": round(hours, 1), "total_lines": total_lines, "breakdown": breakdown}


def complexity_score(commits: list[dict]) -> dict:
    """0-10 score averaged from file count, file-type spread and diff control flow"""
    if not commits:
        return {"score": 0, "factors": {}}

    total_files = 0
    extensions = set()
    indicators = 0

    for commit in commits:
        total_files += commit.get("files_changed") or 0
        for f in commit.get("files") or []:
            if "." in f["filename"]:
                extensions.add(f["filename"].rsplit(".", 1)[1].lower())
        diff = commit.get("diff")
        if diff:
            indicators += sum(len(pattern.findall(diff)) for pattern in COMPLEXITY_INDICATORS)

    factors = {
        "file_count": min(total_files / 10, 10),
        "context_switching": min(len(extensions) * 2, 10),
        "code_complexity": min(indicators / 20, 10),
    }
    score = sum(factors.values()) / 3
    return {"score": round(score, 1), "factors": factors}


def get_time_estimate(commits: list[dict]) -> dict:
    session = estimate_by_session(commits)
    gaps = estimate_by_gaps(commits)
    lines = estimate_by_lines(commits)
    complexity = complexity_score(commits)

    weighted = (
        session["hours"] * SESSION_WEIGHT
        + gaps["hours"] * GAPS_WEIGHT
        + lines["hours"] * LINES_WEIGHT
    )
    return {
        "estimated_hours": round(weighted, 1),
        "methods": {
            "session": session,
            "gaps": {"hours": gaps["hours"]},
            "lines": lines,
            "complexity": complexity,
        },
    }


def load_commits(
    database: Database,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    developer_id: int | None = None,
) -> list[dict]:
    """Stored commits in the window as estimation input"""
    stmt = select(Commit).options(selectinload(Commit.files)).order_by(Commit.committed_at)
    if from_date is not None:
        stmt = stmt.where(Commit.committed_at >= from_date)
    if to_date is not None:
        stmt = stmt.where(Commit.committed_at <= to_date)
    if developer_id is not None:
        stmt = stmt.where(Commit.developer_id == developer_id)

    with database.session_scope() as session:
        return [
            {
                "developer_id": c.developer_id,
                "author_email": c.author_email,
                "committed_at": c.committed_at,
                "lines_added": c.lines_added,
                "lines_removed": c.lines_removed,
                "files_changed": c.files_changed,
                "files": [
                    {
                        "filename": f.filename,
                        "lines_added": f.lines_added,
                        "lines_removed": f.lines_removed,
                        "is_excluded": f.is_excluded,
                    }
                    for f in c.files
                ],
            }
            for c in session.scalars(stmt)
        ]
