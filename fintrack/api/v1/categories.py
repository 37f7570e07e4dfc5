"""
Category API endpoints
"""
from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from fintrack.api.deps import get_db, get_owner_id
from fintrack.application.categories import CategoryService, MainCategoryService
from fintrack.infrastructure.db.models import Category, MainCategory


router = APIRouter(prefix="/api/v1/categories", tags=["categories"])


class CreateCategoryRequest(BaseModel):
    name: str
    main_category: str  # name of one of the owner's main categories
    icon: str = ""


class RenameCategoryRequest(BaseModel):
    name: str


class CreateMainCategoryRequest(BaseModel):
    name: str
    icon: str = ""


class UpdateMainCategoryRequest(BaseModel):
    name: str | None = None
    icon: str | None = None
    sort_order: int | None = None


class MainCategoryResponse(BaseModel):
    id: int
    name: str
    icon: str
    sort_order: int


class CategoryResponse(BaseModel):
    id: int
    name: str
    main_category: str
    icon: str
    sort_order: int


def _to_response(category: Category) -> CategoryResponse:
    return CategoryResponse(
        id=category.id,
        name=category.name,
        main_category=category.main_category,
        icon=category.icon,
        sort_order=category.sort_order,
    )


def _main_to_response(main: MainCategory) -> MainCategoryResponse:
    return MainCategoryResponse(id=main.id, name=main.name, icon=main.icon, sort_order=main.sort_order)


# === Main categories ===

@router.get("/main", response_model=list[MainCategoryResponse])
def list_main_categories(owner_id: int = Depends(get_owner_id), db: Session = Depends(get_db)):
    """Owner's main categories, seeding the defaults on first use"""
    return [_main_to_response(m) for m in MainCategoryService(db).list_main_categories(owner_id)]


@router.post("/main", response_model=MainCategoryResponse, status_code=status.HTTP_201_CREATED)
def create_main_category(
    req: CreateMainCategoryRequest,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    return _main_to_response(MainCategoryService(db).create_main_category(owner_id, req.name, req.icon))


@router.patch("/main/{main_category_id}", response_model=MainCategoryResponse)
def update_main_category(
    main_category_id: int,
    req: UpdateMainCategoryRequest,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    main = MainCategoryService(db).update_main_category(
        owner_id, main_category_id, name=req.name, icon=req.icon, sort_order=req.sort_order
    )
    return _main_to_response(main)


@router.delete("/main/{main_category_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_main_category(main_category_id: int, owner_id: int = Depends(get_owner_id), db: Session = Depends(get_db)):
    MainCategoryService(db).delete_main_category(owner_id, main_category_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# === Categories ===

@router.get("", response_model=list[CategoryResponse])
def list_categories(
    main_category: str | None = None,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    return [_to_response(c) for c in CategoryService(db).list_categories(owner_id, main_category)]


@router.post("", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
def create_category(
    req: CreateCategoryRequest,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    category = CategoryService(db).create_category(owner_id, req.name, req.main_category, req.icon)
    return _to_response(category)


@router.post("/defaults", response_model=list[CategoryResponse])
def seed_default_categories(owner_id: int = Depends(get_owner_id), db: Session = Depends(get_db)):
    """Seed the default set if the owner has no categories yet"""
    return [_to_response(c) for c in CategoryService(db).ensure_default_categories(owner_id)]


@router.patch("/{category_id}", response_model=CategoryResponse)
def rename_category(
    category_id: int,
    req: RenameCategoryRequest,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    return _to_response(CategoryService(db).rename_category(owner_id, category_id, req.name))


@router.delete("/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_category(category_id: int, owner_id: int = Depends(get_owner_id), db: Session = Depends(get_db)):
    CategoryService(db).delete_category(owner_id, category_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
