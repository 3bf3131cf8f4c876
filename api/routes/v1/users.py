"""
api/routes/v1/users.py -- User management routes.

Routes:
  GET    /api/v1/users             -- paginated list (authenticated)
  GET    /api/v1/users/{user_id}   -- single user (authenticated)
  PATCH  /api/v1/users/{user_id}   -- update name / is_active (CSRF, self or admin)
  DELETE /api/v1/users/{user_id}   -- delete account (CSRF, self or admin)

No router-level auth dependency: on state-changing routes CSRF must run
before authentication, and router dependencies would run first. Each route
lists its gates explicitly in execution order.

Only admins may change is_active; a user cannot reactivate or deactivate
themselves. The last active admin cannot be deleted.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from api.csrf import validate_csrf
from api.models import UserListResponse, UserPatch, UserResponse
from auth.dependencies import get_current_user, require_self_or_role
from auth.models import ROLE_ADMIN, User
from auth.store import UserStore

router = APIRouter()


def _load_or_404(store: UserStore, user_id: int) -> User:
    user = store.get_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})
    return user


@router.get("/users", response_model=UserListResponse)
def list_users(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    _user: User = Depends(get_current_user),
) -> UserListResponse:
    store: UserStore = request.app.state.user_store
    users, total = store.list_users(page=page, limit=limit)
    return UserListResponse(
        items=[UserResponse.from_user(u) for u in users],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: int, _user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.from_user(_load_or_404(request.app.state.user_store, user_id))


@router.patch(
    "/users/{user_id}",
    response_model=UserResponse,
    dependencies=[Depends(validate_csrf)],
)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    actor: User = Depends(require_self_or_role(ROLE_ADMIN)),
) -> UserResponse:
    """Apply a partial update. Fields left out of the body are untouched."""
    store: UserStore = request.app.state.user_store
    _load_or_404(store, user_id)

    fields = body.model_dump(exclude_unset=True)
    if "is_active" in fields and actor.role != ROLE_ADMIN:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Only administrators can change account status."},
        )
    if fields:
        store.update_user(user_id, **fields)
    return UserResponse.from_user(_load_or_404(store, user_id))


@router.delete(
    "/users/{user_id}",
    status_code=204,
    dependencies=[Depends(validate_csrf)],
)
def delete_user(
    request: Request,
    user_id: int,
    _actor: User = Depends(require_self_or_role(ROLE_ADMIN)),
) -> Response:
    store: UserStore = request.app.state.user_store
    target = _load_or_404(store, user_id)

    if target.role == ROLE_ADMIN and target.is_active and store.count_active_admins() <= 1:
        raise HTTPException(
            status_code=409,
            detail={"code": "last_admin", "message": "Cannot delete the last active administrator."},
        )
    store.delete_user(user_id)
    return Response(status_code=204)
