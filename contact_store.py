from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from db_models import Contact, LinkPrecedence

FILTER_COLUMNS = {"id", "linkedId"}
PATCH_COLUMNS = {"linkedId", "linkPrecedence", "deletedAt"}


def _timestamp(value: datetime = None) -> str:
    # Stored as UTC ISO-8601 text so ORDER BY createdAt is chronological
    if value is None:
        value = datetime.now(timezone.utc)
    elif value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _to_db(value):
    if isinstance(value, LinkPrecedence):
        return value.value
    if isinstance(value, datetime):
        return _timestamp(value)
    return value


class ContactStore:
    """Contact queries and writes bound to one open connection (one unit of work)."""

    def __init__(self, conn):
        self.conn = conn

    def _fetch(self, query: str, params=()) -> List[Contact]:
        cursor = self.conn.execute(query, params)
        return [Contact(**dict(row)) for row in cursor.fetchall()]

    def find_by_attributes(self, email: str = None, phone: str = None) -> List[Contact]:
        conditions = []
        params = []
        if email is not None:
            conditions.append("email = ?")
            params.append(email)
        if phone is not None:
            conditions.append("phoneNumber = ?")
            params.append(phone)
        if not conditions:
            return []

        match_clause = " OR ".join(conditions)
        query = f"""
            SELECT * FROM Contact
            WHERE deletedAt IS NULL
            AND ({match_clause})
            ORDER BY createdAt ASC, id ASC
        """
        return self._fetch(query, params)

    def find_by_ids(self, ids: Iterable[int]) -> List[Contact]:
        ids = sorted(set(ids))
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        return self._fetch(f"""
            SELECT * FROM Contact
            WHERE deletedAt IS NULL AND id IN ({placeholders})
            ORDER BY createdAt ASC, id ASC
        """, ids)

    def find_group_members(self, primary_id: int) -> List[Contact]:
        """The primary first, then its live secondaries oldest first. Empty if the primary is gone."""
        primary = self._fetch(
            "SELECT * FROM Contact WHERE id = ? AND deletedAt IS NULL",
            (primary_id,),
        )
        if not primary:
            return []

        secondaries = self._fetch("""
            SELECT * FROM Contact
            WHERE linkedId = ? AND deletedAt IS NULL
            ORDER BY createdAt ASC, id ASC
        """, (primary_id,))
        return primary + secondaries

    def get_contact(self, contact_id: int) -> Optional[Contact]:
        found = self._fetch(
            "SELECT * FROM Contact WHERE id = ? AND deletedAt IS NULL",
            (contact_id,),
        )
        return found[0] if found else None

    def create_contact(
        self,
        email: str = None,
        phone: str = None,
        linked_id: int = None,
        precedence: LinkPrecedence = LinkPrecedence.PRIMARY,
        contact_id: int = None,
        created_at: datetime = None,
    ) -> Contact:
        now = _timestamp()
        created = _timestamp(created_at) if created_at else now

        if contact_id is not None:
            self.conn.execute("""
                INSERT INTO Contact (id, phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (contact_id, phone, email, linked_id, _to_db(precedence), created, now))
            result_id = contact_id
        else:
            cursor = self.conn.execute("""
                INSERT INTO Contact (phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (phone, email, linked_id, _to_db(precedence), created, now))
            result_id = cursor.lastrowid

        return self._fetch("SELECT * FROM Contact WHERE id = ?", (result_id,))[0]

    def update_many(self, where: Dict[str, Iterable[Any]], patch: Dict[str, Any]) -> int:
        """
        Apply `patch` to every live row matching `where`.

        `where` maps a column to the values it may take (joined with AND);
        updatedAt is always refreshed. Returns the number of rows changed.
        """
        if not where or not patch:
            raise ValueError("update_many needs both a filter and a patch")
        unknown = (set(where) - FILTER_COLUMNS) | (set(patch) - PATCH_COLUMNS)
        if unknown:
            raise ValueError(f"Unsupported columns: {sorted(unknown)}")

        assignments = [f"{column} = ?" for column in patch] + ["updatedAt = ?"]
        params = [_to_db(value) for value in patch.values()] + [_timestamp()]

        conditions = ["deletedAt IS NULL"]
        for column, values in where.items():
            values = sorted(set(values))
            if not values:
                return 0
            conditions.append(f"{column} IN ({', '.join('?' for _ in values)})")
            params.extend(values)

        cursor = self.conn.execute(
            f"UPDATE Contact SET {', '.join(assignments)} WHERE {' AND '.join(conditions)}",
            params,
        )
        return cursor.rowcount

    def find_broken_links(self, linked_ids: Iterable[int] = None) -> List[Contact]:
        """
        Live secondaries whose linkedId is missing or not a live primary.

        Restricted to rows linked to `linked_ids` when given, the whole table otherwise.
        """
        query = """
            SELECT c.* FROM Contact c
            LEFT JOIN Contact p ON p.id = c.linkedId
            WHERE c.deletedAt IS NULL
            AND c.linkPrecedence = 'secondary'
            AND (p.id IS NULL OR p.deletedAt IS NOT NULL OR p.linkPrecedence != 'primary')
        """
        params = []
        if linked_ids is not None:
            params = sorted(set(linked_ids))
            if not params:
                return []
            query += f" AND c.linkedId IN ({', '.join('?' for _ in params)})"
        return self._fetch(query + " ORDER BY c.createdAt ASC, c.id ASC", params)
