"""
Category use cases

Main categories are per-owner rows; every Category.main_category must name
one of them. The default set is seeded the first time an owner's main
categories are read.
"""
import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from fintrack.domain.category import DEFAULT_CATEGORIES, DEFAULT_MAIN_CATEGORIES, MAIN_CATEGORY_NAME_MAX
from fintrack.domain.errors import ConflictError, NotFoundError, ValidationError
from fintrack.infrastructure.db.models import Category, MainCategory, Transaction, utcnow
from fintrack.infrastructure.db.store import RecordStore

logger = logging.getLogger(__name__)


def _clean_main_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Main category name is required")
    if len(name) > MAIN_CATEGORY_NAME_MAX:
        raise ValidationError(f"Main category name must be at most {MAIN_CATEGORY_NAME_MAX} characters")
    return name


class MainCategoryService:
    def __init__(self, db: Session):
        self.db = db
        self.store = RecordStore(db)

    def ensure_default_main_categories(self, owner_id: int) -> list[MainCategory]:
        """
        Seed the default main categories for an owner who has none yet.

        Idempotent: an owner with at least one main category is left alone.
        """
        existing = self._query(owner_id)
        if existing:
            return existing

        with self.store.atomic():
            for i, item in enumerate(DEFAULT_MAIN_CATEGORIES):
                self.store.put(MainCategory(
                    owner_id=owner_id,
                    name=item["name"],
                    icon=item["icon"],
                    sort_order=i,
                ))
        logger.info(f"Seeded {len(DEFAULT_MAIN_CATEGORIES)} default main categories for owner {owner_id}")
        return self._query(owner_id)

    def list_main_categories(self, owner_id: int) -> list[MainCategory]:
        return self.ensure_default_main_categories(owner_id)

    def get_main_category(self, owner_id: int, main_category_id: int) -> MainCategory:
        main = self.store.get(MainCategory, main_category_id)
        if main is None or main.owner_id != owner_id:
            raise NotFoundError(f"Main category #{main_category_id} not found")
        return main

    def find_by_name(self, owner_id: int, name: str) -> Optional[MainCategory]:
        rows = self.store.query(
            MainCategory,
            MainCategory.owner_id == owner_id,
            func.lower(MainCategory.name) == (name or "").strip().lower(),
            limit=1,
        )
        return rows[0] if rows else None

    def create_main_category(self, owner_id: int, name: str, icon: str = "") -> MainCategory:
        self.ensure_default_main_categories(owner_id)
        name = _clean_main_name(name)
        self._check_name_free(owner_id, name)

        max_order = (
            self.db.query(func.max(MainCategory.sort_order))
            .filter(MainCategory.owner_id == owner_id)
            .scalar()
        )
        with self.store.atomic():
            main = self.store.put(MainCategory(
                owner_id=owner_id,
                name=name,
                icon=icon or "",
                sort_order=(max_order or 0) + 1,
            ))
        logger.info(f"Created main category {name!r} for owner {owner_id}")
        return main

    def update_main_category(
        self,
        owner_id: int,
        main_category_id: int,
        name: Optional[str] = None,
        icon: Optional[str] = None,
        sort_order: Optional[int] = None,
    ) -> MainCategory:
        """
        Update a main category. A rename is carried over to every category
        filed under the old name in the same transaction.
        """
        main = self.get_main_category(owner_id, main_category_id)
        old_name = main.name
        new_name = old_name
        if name is not None:
            new_name = _clean_main_name(name)
            if new_name.lower() != old_name.lower():
                self._check_name_free(owner_id, new_name)

        with self.store.atomic():
            if new_name != old_name:
                self.db.query(Category).filter(
                    Category.owner_id == owner_id,
                    Category.main_category == old_name,
                ).update({Category.main_category: new_name, Category.updated_at: utcnow()},
                         synchronize_session="fetch")
                main.name = new_name
            if icon is not None:
                main.icon = icon
            if sort_order is not None:
                main.sort_order = sort_order
            main.updated_at = utcnow()
            self.db.flush()
        return main

    def delete_main_category(self, owner_id: int, main_category_id: int) -> None:
        """Only main categories with no categories filed under them can be deleted."""
        main = self.get_main_category(owner_id, main_category_id)
        used = self.store.query(
            Category,
            Category.owner_id == owner_id,
            Category.main_category == main.name,
            limit=1,
        )
        if used:
            raise ValidationError(f"Main category {main.name!r} is used by categories and cannot be deleted")
        with self.store.atomic():
            self.store.delete(main)
        logger.info(f"Deleted main category {main.name!r} for owner {owner_id}")

    def _query(self, owner_id: int) -> list[MainCategory]:
        return self.store.query(
            MainCategory,
            MainCategory.owner_id == owner_id,
            order_by=[MainCategory.sort_order.asc(), MainCategory.id.asc()],
        )

    def _check_name_free(self, owner_id: int, name: str) -> None:
        if self.find_by_name(owner_id, name) is not None:
            raise ConflictError(f"Main category {name!r} already exists")


class CategoryService:
    def __init__(self, db: Session):
        self.db = db
        self.store = RecordStore(db)
        self.main_categories = MainCategoryService(db)

    def ensure_default_categories(self, owner_id: int) -> list[Category]:
        """
        Seed the default category set for an owner who has none yet.

        Idempotent: an owner with at least one category is left alone.
        Default main categories are seeded first.
        """
        existing = self.list_categories(owner_id)
        if existing:
            return existing

        mains = {m.name for m in self.main_categories.ensure_default_main_categories(owner_id)}
        with self.store.atomic():
            for i, item in enumerate(DEFAULT_CATEGORIES):
                if item["main_category"] not in mains:
                    continue
                self.store.put(Category(
                    owner_id=owner_id,
                    name=item["name"],
                    main_category=item["main_category"],
                    icon=item["icon"],
                    sort_order=i,
                ))
        seeded = self.list_categories(owner_id)
        logger.info(f"Seeded {len(seeded)} default categories for owner {owner_id}")
        return seeded

    def create_category(self, owner_id: int, name: str, main_category: str, icon: str = "") -> Category:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Category name is required")
        main_category = self._resolve_main_category(owner_id, main_category)

        max_order = (
            self.db.query(func.max(Category.sort_order))
            .filter(Category.owner_id == owner_id)
            .scalar()
        )
        # Duplicate names are rejected by uq_category_owner_name -> ConflictError
        with self.store.atomic():
            category = self.store.put(Category(
                owner_id=owner_id,
                name=name,
                main_category=main_category,
                icon=icon or "",
                sort_order=(max_order or 0) + 1,
            ))
        return category

    def get_category(self, owner_id: int, category_id: int) -> Category:
        category = self.store.get(Category, category_id)
        if category is None or category.owner_id != owner_id:
            raise NotFoundError(f"Category #{category_id} not found")
        return category

    def list_categories(self, owner_id: int, main_category: Optional[str] = None) -> list[Category]:
        filters = [Category.owner_id == owner_id]
        if main_category is not None:
            filters.append(Category.main_category == main_category)
        return self.store.query(Category, *filters, order_by=[Category.sort_order.asc(), Category.id.asc()])

    def rename_category(self, owner_id: int, category_id: int, name: str) -> Category:
        category = self.get_category(owner_id, category_id)
        name = (name or "").strip()
        if not name:
            raise ValidationError("Category name is required")
        with self.store.atomic():
            category.name = name
            category.updated_at = utcnow()
            self.db.flush()
        return category

    def delete_category(self, owner_id: int, category_id: int) -> None:
        """Only unused categories can be deleted."""
        category = self.get_category(owner_id, category_id)
        used = self.store.query(Transaction, Transaction.category_id == category_id, limit=1)
        if used:
            raise ValidationError("Category is used by transactions and cannot be deleted")
        with self.store.atomic():
            self.store.delete(category)

    def _resolve_main_category(self, owner_id: int, main_category: str) -> str:
        """Canonical stored name of one of the owner's main categories."""
        mains = self.main_categories.list_main_categories(owner_id)
        wanted = (main_category or "").strip().lower()
        for main in mains:
            if main.name.lower() == wanted:
                return main.name
        raise ValidationError(
            f"Unknown main category {main_category!r}, expected one of: {', '.join(m.name for m in mains)}"
        )
