"""User endpoints, including self-service and bulk import.

Fixed paths (``/me``, ``/team-members``, ``/bulk-*``) are declared before
``/{user_id}`` so they are never captured as an id.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, File, Response, UploadFile, status

from taskflow.server.db.tables import User
from taskflow.server.deps import Context, DbSession, Uow, get_context
from taskflow.server.managers import bulk_import, users
from taskflow.server.models.api import (
    BulkImportResult,
    PasswordChange,
    PasswordReset,
    ProfileUpdate,
    RoleUpdate,
    UserBulkDelete,
    UserBulkDeleteResult,
    UserCreate,
    UserResponse,
    UserUpdate,
)
from taskflow.server.routers._errors import domain_errors

router = APIRouter(prefix="/users", tags=["users"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.get("", response_model=list[UserResponse])
async def list_users(db: DbSession, ctx: Context) -> list[User]:
    """Users visible to the caller: everyone for admins, led teams for leads, self otherwise."""
    with domain_errors():
        return await users.list_users(db, ctx)


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(body: UserCreate, uow: Uow) -> User:
    with domain_errors():
        return await users.create_user(uow, body)


# -- Self-service ----------------------------------------------------------------


@router.get("/me", response_model=UserResponse)
async def get_me(ctx: Context) -> User:
    return ctx.user


@router.patch("/me", response_model=UserResponse)
async def update_me(body: ProfileUpdate, uow: Uow) -> User:
    with domain_errors():
        return await users.update_profile(uow, body)


@router.post("/me/change-password", status_code=status.HTTP_204_NO_CONTENT)
async def change_password(body: PasswordChange, uow: Uow) -> None:
    with domain_errors():
        await users.change_password(uow, body)


@router.get("/team-members", response_model=list[UserResponse])
async def team_members(db: DbSession, ctx: Context) -> list[User]:
    """Members of the teams the caller leads, the caller first."""
    with domain_errors():
        return await users.team_members(db, ctx)


# -- Bulk operations -----------------------------------------------------------


@router.post("/bulk-delete", response_model=UserBulkDeleteResult)
async def bulk_delete_users(body: UserBulkDelete, uow: Uow) -> UserBulkDeleteResult:
    with domain_errors():
        return await users.bulk_delete_users(uow, body.user_ids)


@router.post("/bulk-import/json", response_model=BulkImportResult)
async def bulk_import_json(uow: Uow, file: UploadFile = File(...)) -> BulkImportResult:
    """Import users from a JSON array of user objects."""
    content = await file.read()
    with domain_errors():
        return await bulk_import.import_users(uow, bulk_import.parse_json(content))


@router.post("/bulk-import/excel", response_model=BulkImportResult)
async def bulk_import_excel(uow: Uow, file: UploadFile = File(...)) -> BulkImportResult:
    """Import users from the first sheet of an ``.xlsx`` workbook."""
    content = await file.read()
    with domain_errors():
        return await bulk_import.import_users(uow, bulk_import.parse_excel(content))


@router.get("/bulk-import/template", dependencies=[Depends(get_context)])
async def excel_template() -> Response:
    return Response(
        content=bulk_import.excel_template(),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="user_import_template.xlsx"'},
    )


@router.get("/bulk-import/template-json", dependencies=[Depends(get_context)])
async def json_template() -> list[dict[str, Any]]:
    return bulk_import.json_template()


# -- Single user ---------------------------------------------------------------


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: str, db: DbSession, ctx: Context) -> User:
    with domain_errors():
        return await users.get_user(db, ctx, user_id)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(user_id: str, body: UserUpdate, uow: Uow) -> User:
    with domain_errors():
        return await users.update_user(uow, user_id, body)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(user_id: str, uow: Uow) -> None:
    with domain_errors():
        await users.delete_user(uow, user_id)


@router.patch("/{user_id}/role", response_model=UserResponse)
async def change_role(user_id: str, body: RoleUpdate, uow: Uow) -> User:
    with domain_errors():
        return await users.change_role(uow, user_id, body.role)


@router.patch("/{user_id}/password", status_code=status.HTTP_204_NO_CONTENT)
async def reset_password(user_id: str, body: PasswordReset, uow: Uow) -> None:
    with domain_errors():
        await users.reset_password(uow, user_id, body.password)


@router.patch("/{user_id}/activate", response_model=UserResponse)
async def activate_user(user_id: str, uow: Uow) -> User:
    with domain_errors():
        return await users.set_employment_status(uow, user_id, active=True)


@router.patch("/{user_id}/deactivate", response_model=UserResponse)
async def deactivate_user(user_id: str, uow: Uow) -> User:
    with domain_errors():
        return await users.set_employment_status(uow, user_id, active=False)
