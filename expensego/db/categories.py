"""
Categories repository module.

Handles category CRUD inside a (bank, year) scope, enforcing that
(name, type) pairs stay unique, and merges duplicates left behind by
older data or imports.
"""

import logging
from typing import Any, Optional

from expensego.config import MAX_NAME_LENGTH
from expensego.exceptions import (
    ConstraintViolation,
    DuplicateName,
    NotFound,
    ValidationError,
)
from expensego.models import CategoryType

from .base import BaseRepository, LedgerDatabase, has_field, pick, utc_now
from .models import Category, normalize_name
from .schema import SchemaManager

logger = logging.getLogger(__name__)

CATEGORY_COLUMNS = """
    category_id, bank_id, fiscal_year, name, type, parent_category_id,
    color_code, icon, is_default, created_at, updated_at
"""


class CategoryRepository(BaseRepository):
    """Repository for managing the categories of a scope."""

    def __init__(self, database: LedgerDatabase, schema: Optional[SchemaManager] = None):
        super().__init__(database)
        self.schema = schema or SchemaManager(database)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _clean_name(name: Any) -> str:
        if name is None or not str(name).strip():
            raise ValidationError("Category name cannot be empty")
        name = " ".join(str(name).split())
        if len(name) > MAX_NAME_LENGTH:
            raise ValidationError(
                f"Category name must be at most {MAX_NAME_LENGTH} characters"
            )
        return name

    @staticmethod
    def _clean_type(value: Any) -> CategoryType:
        if isinstance(value, CategoryType):
            return value
        try:
            return CategoryType(str(value).strip().lower())
        except ValueError:
            raise ValidationError(
                f"Invalid category type {value!r}; expected 'expense' or 'income'"
            )

    @staticmethod
    def _fetch(conn, bank_id: int, year: int, category_id: int):
        return conn.execute(
            f"""
            SELECT {CATEGORY_COLUMNS} FROM categories
            WHERE category_id = ? AND bank_id = ? AND fiscal_year = ?
            """,
            (category_id, bank_id, year),
        ).fetchone()

    @staticmethod
    def _find_clash(
        conn,
        bank_id: int,
        year: int,
        name: str,
        category_type: CategoryType,
        exclude_id: Optional[int] = None,
    ) -> Optional[int]:
        """Id of another category in scope with the same (name, type)."""
        rows = conn.execute(
            """
            SELECT category_id, name FROM categories
            WHERE bank_id = ? AND fiscal_year = ? AND type = ?
            """,
            (bank_id, year, category_type.value),
        ).fetchall()
        wanted = normalize_name(name)
        for row in rows:
            if row["category_id"] != exclude_id and normalize_name(row["name"]) == wanted:
                return row["category_id"]
        return None

    def _check_parent(self, conn, bank_id: int, year: int, parent_id, category_id=None):
        if parent_id is None:
            return None
        self._validate_id(parent_id, "parent_category_id")
        if parent_id == category_id:
            raise ValidationError("A category cannot be its own parent")
        if not self._fetch(conn, bank_id, year, parent_id):
            raise NotFound(f"Parent category {parent_id} not found")
        if category_id is not None and self._is_ancestor(conn, category_id, parent_id):
            raise ValidationError("A category cannot be nested under its own subcategory")
        return parent_id

    @staticmethod
    def _is_ancestor(conn, ancestor_id: int, start_id: Optional[int]) -> bool:
        """Whether ancestor_id is start_id or sits above it in the parent chain."""
        seen = set()
        current = start_id
        while current is not None and current not in seen:
            if current == ancestor_id:
                return True
            seen.add(current)
            row = conn.execute(
                "SELECT parent_category_id FROM categories WHERE category_id = ?",
                (current,),
            ).fetchone()
            current = row["parent_category_id"] if row else None
        return False

    # =========================================================================
    # Create / Read
    # =========================================================================

    def create_category(self, bank_id: int, year: int, data: dict[str, Any]) -> int:
        """
        Create a category.

        Args:
            bank_id: Bank owning the scope
            year: Fiscal year of the scope
            data: Fields (name, type, parent_category_id, color_code, icon)

        Returns:
            The new category id

        Raises:
            ValidationError: If name or type is missing or malformed
            DuplicateName: If (name, type) already exists in the scope
        """
        self._validate_scope(bank_id, year)
        name = self._clean_name(pick(data, "name"))
        category_type = self._clean_type(pick(data, "type", CategoryType.EXPENSE.value))

        self.schema.ensure_tables(bank_id, year)
        with self._transaction() as conn:
            if self._find_clash(conn, bank_id, year, name, category_type):
                raise DuplicateName(
                    f"A {category_type.value} category named \"{name}\" already exists"
                )
            parent_id = self._check_parent(
                conn, bank_id, year, pick(data, "parent_category_id")
            )
            now = utc_now()
            cursor = conn.execute(
                """
                INSERT INTO categories
                (bank_id, fiscal_year, name, type, parent_category_id, color_code,
                 icon, is_default, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (
                    bank_id,
                    year,
                    name,
                    category_type.value,
                    parent_id,
                    pick(data, "color_code") or pick(data, "color"),
                    pick(data, "icon"),
                    now,
                    now,
                ),
            )
            category_id = cursor.lastrowid

        logger.info(
            f"Created {category_type.value} category '{name}' id {category_id} "
            f"in scope ({bank_id}, {year})"
        )
        return category_id

    def get_categories(
        self,
        bank_id: int,
        year: int,
        category_type: Optional[CategoryType] = None,
    ) -> list[Category]:
        """List the categories of a scope ordered by name."""
        self._validate_scope(bank_id, year)
        self.schema.ensure_tables(bank_id, year)

        query = f"""
            SELECT {CATEGORY_COLUMNS} FROM categories
            WHERE bank_id = ? AND fiscal_year = ?
        """
        params: list[Any] = [bank_id, year]
        if category_type is not None:
            query += " AND type = ?"
            params.append(self._clean_type(category_type).value)
        query += " ORDER BY name COLLATE NOCASE, category_id"

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
        return [Category.from_row(row) for row in rows]

    def get_category(self, bank_id: int, year: int, category_id: int) -> Category:
        """
        Get one category.

        Raises:
            NotFound: If the category does not exist in the scope
        """
        self._validate_scope(bank_id, year)
        self._validate_id(category_id, "category_id")
        with self._transaction() as conn:
            row = self._fetch(conn, bank_id, year, category_id)
        if not row:
            raise NotFound(f"Category {category_id} not found")
        return Category.from_row(row)

    def find_category(
        self, bank_id: int, year: int, name: str, category_type: CategoryType
    ) -> Optional[Category]:
        """Look up a category by normalized (name, type)."""
        self._validate_scope(bank_id, year)
        category_type = self._clean_type(category_type)
        with self._transaction() as conn:
            category_id = self._find_clash(conn, bank_id, year, name, category_type)
            if category_id is None:
                return None
            return Category.from_row(self._fetch(conn, bank_id, year, category_id))

    # =========================================================================
    # Update / Delete
    # =========================================================================

    def update_category(
        self, bank_id: int, year: int, category_id: int, data: dict[str, Any]
    ) -> Category:
        """
        Update a category. Only the fields present in data change.

        Default categories keep their name and type; their colour and icon
        may change.

        Raises:
            NotFound: If the category does not exist
            DuplicateName: If the new (name, type) clashes with another category
            ConstraintViolation: If renaming or retyping a default category
        """
        self._validate_scope(bank_id, year)
        self._validate_id(category_id, "category_id")

        with self._transaction() as conn:
            row = self._fetch(conn, bank_id, year, category_id)
            if not row:
                raise NotFound(f"Category {category_id} not found")
            category = Category.from_row(row)

            new_name = (
                self._clean_name(pick(data, "name"))
                if has_field(data, "name")
                else category.name
            )
            new_type = (
                self._clean_type(pick(data, "type"))
                if has_field(data, "type")
                else category.category_type
            )

            if category.is_default and (
                new_name != category.name or new_type != category.category_type
            ):
                raise ConstraintViolation(
                    f"Default category \"{category.name}\" cannot be renamed or retyped"
                )
            if self._find_clash(conn, bank_id, year, new_name, new_type, category_id):
                raise DuplicateName(
                    f"A {new_type.value} category named \"{new_name}\" already exists"
                )

            if new_type != category.category_type:
                used = conn.execute(
                    "SELECT COUNT(*) FROM transactions WHERE category_id = ?",
                    (category_id,),
                ).fetchone()[0]
                if used:
                    raise ConstraintViolation(
                        f"Cannot change the type of \"{category.name}\" while "
                        f"{used} transaction(s) use it"
                    )

            if has_field(data, "parent_category_id"):
                category.parent_category_id = self._check_parent(
                    conn, bank_id, year, pick(data, "parent_category_id"), category_id
                )
            if has_field(data, "color_code") or has_field(data, "color"):
                category.color_code = pick(data, "color_code") or pick(data, "color")
            if has_field(data, "icon"):
                category.icon = pick(data, "icon")

            category.name = new_name
            category.category_type = new_type
            category.updated_at = utc_now()
            conn.execute(
                """
                UPDATE categories
                SET name = ?, type = ?, parent_category_id = ?, color_code = ?,
                    icon = ?, updated_at = ?
                WHERE category_id = ?
                """,
                (
                    category.name,
                    category.category_type.value,
                    category.parent_category_id,
                    category.color_code,
                    category.icon,
                    category.updated_at,
                    category_id,
                ),
            )

        logger.info(f"Updated category {category_id} in scope ({bank_id}, {year})")
        return category

    def delete_category(self, bank_id: int, year: int, category_id: int) -> bool:
        """
        Delete a category that is neither default nor referenced.

        Raises:
            NotFound: If the category does not exist
            ConstraintViolation: If it is a default category or any
                transaction references it
        """
        self._validate_scope(bank_id, year)
        self._validate_id(category_id, "category_id")

        with self._transaction() as conn:
            row = self._fetch(conn, bank_id, year, category_id)
            if not row:
                raise NotFound(f"Category {category_id} not found")
            if row["is_default"]:
                raise ConstraintViolation(
                    f"Cannot delete default category \"{row['name']}\""
                )

            count = conn.execute(
                "SELECT COUNT(*) FROM transactions WHERE category_id = ?",
                (category_id,),
            ).fetchone()[0]
            if count > 0:
                raise ConstraintViolation(
                    f"Cannot delete category \"{row['name']}\" because "
                    f"{count} transaction(s) use it"
                )

            conn.execute(
                "UPDATE categories SET parent_category_id = NULL "
                "WHERE parent_category_id = ?",
                (category_id,),
            )
            conn.execute("DELETE FROM categories WHERE category_id = ?", (category_id,))

        logger.info(f"Deleted category {category_id} from scope ({bank_id}, {year})")
        return True

    # =========================================================================
    # Maintenance
    # =========================================================================

    def cleanup_duplicate_categories(self, bank_id: int, year: int) -> int:
        """
        Merge categories that share a normalized (name, type).

        The lowest id in each group is kept. Transactions and child
        categories pointing at a duplicate are redirected to it, and if any
        member of the group was a default category the kept one becomes
        default. Running this on clean data changes nothing.

        Returns:
            Number of duplicate categories removed
        """
        self._validate_scope(bank_id, year)
        self.schema.ensure_tables(bank_id, year)

        removed = 0
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT category_id, name, type, is_default FROM categories
                WHERE bank_id = ? AND fiscal_year = ?
                ORDER BY category_id
                """,
                (bank_id, year),
            ).fetchall()

            groups: dict[tuple[str, str], list] = {}
            for row in rows:
                groups.setdefault((normalize_name(row["name"]), row["type"]), []).append(
                    row
                )

            for key, members in groups.items():
                if len(members) < 2:
                    continue
                canonical = members[0]
                canonical_id = canonical["category_id"]
                duplicate_ids = [m["category_id"] for m in members[1:]]
                placeholders = ", ".join("?" for _ in duplicate_ids)

                conn.execute(
                    f"""
                    UPDATE transactions SET category_id = ?, updated_at = ?
                    WHERE category_id IN ({placeholders})
                    """,
                    (canonical_id, utc_now(), *duplicate_ids),
                )
                conn.execute(
                    f"""
                    UPDATE categories SET parent_category_id = ?
                    WHERE parent_category_id IN ({placeholders}) AND category_id != ?
                    """,
                    (canonical_id, *duplicate_ids, canonical_id),
                )
                parent_id = conn.execute(
                    "SELECT parent_category_id FROM categories WHERE category_id = ?",
                    (canonical_id,),
                ).fetchone()[0]
                if parent_id in duplicate_ids or self._is_ancestor(
                    conn, canonical_id, parent_id
                ):
                    conn.execute(
                        "UPDATE categories SET parent_category_id = NULL "
                        "WHERE category_id = ?",
                        (canonical_id,),
                    )
                if any(m["is_default"] for m in members) and not canonical["is_default"]:
                    conn.execute(
                        "UPDATE categories SET is_default = 1 WHERE category_id = ?",
                        (canonical_id,),
                    )
                conn.execute(
                    f"DELETE FROM categories WHERE category_id IN ({placeholders})",
                    duplicate_ids,
                )
                removed += len(duplicate_ids)
                logger.info(
                    f"Merged categories {duplicate_ids} into {canonical_id} ({key[1]})"
                )

        if removed:
            logger.info(
                f"Removed {removed} duplicate categories from scope ({bank_id}, {year})"
            )
        else:
            logger.debug(f"No duplicate categories in scope ({bank_id}, {year})")
        return removed
