"""Developer identity resolution.

Raw (author name, author email) pairs seen on commits are clustered into canonical
Developer records. Two identities belong to the same person when:

1. their emails are equal (case-insensitive),
2. their email domains are equal and the first tokens of their names are within a
   Levenshtein distance of 2, or
3. their normalized full names are equal and longer than 5 characters.

Matching is transitive: clusters are built with union-find over every new pair and
every stored identity, so A-B and B-C put A, B and C under one developer regardless
of the order they were seen in.
"""

import re
from collections import Counter

from sqlalchemy import delete, func, select, update

from commit2base.config import LOGGER_COMMIT2BASE, get_logger
from commit2base.database.connection import Database
from commit2base.database.model import Commit, Developer, DeveloperIdentity

logger = get_logger(LOGGER_COMMIT2BASE)

MAX_FIRST_NAME_DISTANCE = 3  # strict
MIN_NORMALIZED_NAME_LENGTH = 5  # strict


class DeveloperNotFoundError(ValueError):
    def __init__(self, developer_id):
        self.developer_id = developer_id
        super().__init__(f"Developer not found: {developer_id}")


def levenshtein_distance(a: str, b: str) -> int:
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, 1):
        current = [i]
        for j, char_b in enumerate(b, 1):
            if char_a == char_b:
                current.append(previous[j - 1])
            else:
                current.append(1 + min(previous[j], current[j - 1], previous[j - 1]))
        previous = current
    return previous[-1]


def normalize_name(name: str | None) -> str:
    """Lower-case, drop middle initials, collapse whitespace"""
    if not name:
        return ""
    normalized = re.sub(r"\s+[a-z]\.?\s+", " ", name.lower())
    return re.sub(r"\s+", " ", normalized).strip()


def email_domain(email: str | None) -> str:
    if not email or "@" not in email:
        return ""
    return email.split("@", 1)[1].lower()


def first_name(name: str | None) -> str:
    if not name or not name.strip():
        return ""
    return name.split()[0].lower()


def are_same_person(name1, email1, name2, email2) -> bool:
    if email1 and email2 and email1.lower() == email2.lower():
        return True

    domain = email_domain(email1)
    if domain and domain == email_domain(email2):
        first1, first2 = first_name(name1), first_name(name2)
        if first1 and first2 and levenshtein_distance(first1, first2) < MAX_FIRST_NAME_DISTANCE:
            return True

    normalized = normalize_name(name1)
    return len(normalized) > MIN_NORMALIZED_NAME_LENGTH and normalized == normalize_name(name2)


def default_name(name: str | None, email: str) -> str:
    return name.strip() if name and name.strip() else email.split("@")[0]


class _Node:
    """One email with every name observed for it"""

    def __init__(self, email, names, identity_id=None, developer_id=None):
        self.email = email
        self.names = names
        self.identity_id = identity_id
        self.developer_id = developer_id

    @property
    def is_new(self) -> bool:
        return self.identity_id is None

    def matches(self, other: "_Node") -> bool:
        return any(
            are_same_person(n1, self.email, n2, other.email)
            for n1 in self.names
            for n2 in other.names
        )


class _UnionFind:
    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, i: int) -> int:
        while self.parent[i] != i:
            self.parent[i] = self.parent[self.parent[i]]
            i = self.parent[i]
        return i

    def union(self, a: int, b: int):
        root_a, root_b = self.find(a), self.find(b)
        if root_a != root_b:
            self.parent[max(root_a, root_b)] = min(root_a, root_b)


class DeveloperIdentityResolver:
    def __init__(self, database: Database):
        self.database = database

    def resolve(self) -> dict:
        """Bind every unattributed commit with an email to a developer.

        New (name, email) pairs either join the developer of a matching stored
        identity or form a new developer. Afterwards every commit whose trimmed, lower-cased author
        email matches an identity and whose developer is unset is attributed,
        including commits from earlier sync passes.
        """
        stats = {"identities_created": 0, "developers_created": 0, "commits_attributed": 0}

        with self.database.session_scope() as session:
            existing = list(session.scalars(select(DeveloperIdentity).order_by(DeveloperIdentity.id)))
            known_emails = {identity.email for identity in existing}

            new_nodes: dict[str, _Node] = {}
            unmapped = session.execute(
                select(Commit.author_name, Commit.author_email)
                .where(
                    Commit.developer_id.is_(None),
                    Commit.author_email.is_not(None),
                    Commit.author_email != "",
                )
                .order_by(Commit.id)
            )
            for author_name, author_email in unmapped:
                email = author_email.strip().lower()
                if not email or email in known_emails:
                    continue
                node = new_nodes.setdefault(email, _Node(email, []))
                name = default_name(author_name, email)
                if name not in node.names:
                    node.names.append(name)

            if new_nodes:
                nodes = [
                    _Node(i.email, [i.name], identity_id=i.id, developer_id=i.developer_id)
                    for i in existing
                ] + list(new_nodes.values())
                self._attach_new_nodes(session, nodes, stats)

            stats["commits_attributed"] = self._attribute_commits(session)

        logger.info(
            f"Identities: {stats['identities_created']} created, "
            f"{stats['developers_created']} developers created, "
            f"{stats['commits_attributed']} commits attributed"
        )
        return stats

    def _attach_new_nodes(self, session, nodes: list[_Node], stats: dict):
        clusters = _UnionFind(len(nodes))
        for i, node in enumerate(nodes):
            if not node.is_new:
                continue
            # Stored-stored pairs are left alone, merging developers is explicit
            for j, other in enumerate(nodes):
                if i != j and node.matches(other):
                    clusters.union(i, j)

        groups: dict[int, list[_Node]] = {}
        for i, node in enumerate(nodes):
            groups.setdefault(clusters.find(i), []).append(node)

        for members in groups.values():
            new_members = [n for n in members if n.is_new]
            if not new_members:
                continue

            stored = [n for n in members if not n.is_new]
            if stored:
                developer_id = min(stored, key=lambda n: n.identity_id).developer_id
            else:
                first = new_members[0]
                developer = Developer(canonical_name=first.names[0], is_active=True)
                session.add(developer)
                session.flush()
                developer_id = developer.id
                stats["developers_created"] += 1

            for node in new_members:
                session.add(DeveloperIdentity(developer_id=developer_id, name=node.names[0], email=node.email))
                stats["identities_created"] += 1
        session.flush()

    @staticmethod
    def _attribute_commits(session) -> int:
        # Same normalization as resolve(): trimmed and lower-cased
        commit_email = func.lower(func.trim(Commit.author_email))
        identity_developer = (
            select(DeveloperIdentity.developer_id)
            .where(DeveloperIdentity.email == commit_email)
            .correlate(Commit)
            .scalar_subquery()
        )
        stmt = (
            update(Commit)
            .where(
                Commit.developer_id.is_(None),
                commit_email.in_(select(DeveloperIdentity.email)),
            )
            .values(developer_id=identity_developer)
            .execution_options(synchronize_session=False)
        )
        return session.execute(stmt).rowcount or 0

    def merge(self, source_id: int, target_id: int):
        """Move every identity and commit of source onto target, then delete source"""
        if source_id == target_id:
            raise ValueError("Cannot merge a developer into itself")

        with self.database.session_scope() as session:
            for developer_id in (source_id, target_id):
                if session.get(Developer, developer_id) is None:
                    raise DeveloperNotFoundError(developer_id)

            session.execute(
                update(DeveloperIdentity)
                .where(DeveloperIdentity.developer_id == source_id)
                .values(developer_id=target_id)
                .execution_options(synchronize_session=False)
            )
            moved = session.execute(
                update(Commit)
                .where(Commit.developer_id == source_id)
                .values(developer_id=target_id)
                .execution_options(synchronize_session=False)
            ).rowcount
            session.execute(
                delete(Developer)
                .where(Developer.id == source_id)
                .execution_options(synchronize_session=False)
            )
            session.expire_all()
            self._update_canonical_name(session, target_id)

        logger.info(f"Merged developer {source_id} into {target_id}, {moved} commits moved")

    def update_canonical_name(self, developer_id: int) -> str:
        with self.database.session_scope() as session:
            return self._update_canonical_name(session, developer_id)

    @staticmethod
    def _update_canonical_name(session, developer_id: int) -> str:
        """Most frequent identity name, ties going to the earliest identity"""
        developer = session.get(Developer, developer_id)
        if developer is None:
            raise DeveloperNotFoundError(developer_id)

        names = list(
            session.scalars(
                select(DeveloperIdentity.name)
                .where(DeveloperIdentity.developer_id == developer_id)
                .order_by(DeveloperIdentity.id)
            )
        )
        if names:
            counts = Counter(names)
            developer.canonical_name = max(dict.fromkeys(names), key=counts.get)
        return developer.canonical_name

    def rename(self, developer_id: int, name: str):
        if not name or not name.strip():
            raise ValueError("Developer name must not be empty")
        with self.database.session_scope() as session:
            developer = session.get(Developer, developer_id)
            if developer is None:
                raise DeveloperNotFoundError(developer_id)
            developer.canonical_name = name.strip()

    def set_active(self, developer_id: int, is_active: bool):
        with self.database.session_scope() as session:
            developer = session.get(Developer, developer_id)
            if developer is None:
                raise DeveloperNotFoundError(developer_id)
            developer.is_active = bool(is_active)

    def list_developers(self) -> list[dict]:
        """Developers with identities and commit/line totals, busiest first"""
        with self.database.session_scope() as session:
            totals = {
                developer_id: (count, added or 0, removed or 0)
                for developer_id, count, added, removed in session.execute(
                    select(
                        Commit.developer_id,
                        func.count(Commit.id),
                        func.sum(Commit.lines_added),
                        func.sum(Commit.lines_removed),
                    )
                    .where(Commit.developer_id.is_not(None))
                    .group_by(Commit.developer_id)
                )
            }

            developers = []
            for developer in session.scalars(select(Developer).order_by(Developer.id)):
                count, added, removed = totals.get(developer.id, (0, 0, 0))
                developers.append(
                    {
                        "id": developer.id,
                        "canonical_name": developer.canonical_name,
                        "is_active": bool(developer.is_active),
                        "commit_count": count,
                        "total_lines_added": added,
                        "total_lines_removed": removed,
                        "identities": [i.to_dict() for i in developer.identities],
                    }
                )

        developers.sort(key=lambda d: d["commit_count"], reverse=True)
        return developers
