# chatsync/api/routes/users.py

from typing import List

from fastapi import APIRouter, Depends, HTTPException

from chatsync.api.auth import get_current_user_id
from chatsync.core import state
from chatsync.models.models import CreateUserRequest, StatusRequest, UpdateProfileRequest, User

router = APIRouter(prefix="/users", tags=["Users"])


@router.post("/me", response_model=User, status_code=201)
async def create_me(request: CreateUserRequest, uid: str = Depends(get_current_user_id)):
    """
    Create the profile of the authenticated user.

    Raises:
        HTTPException: 409 if the profile already exists
    """
    return await state.users.create_user(
        uid,
        email=request.email,
        first_name=request.first_name,
        last_name=request.last_name,
        date_of_birth=request.date_of_birth,
    )


@router.get("/me", response_model=User)
async def get_me(uid: str = Depends(get_current_user_id)):
    return await state.users.require_user(uid)


@router.patch("/me", response_model=User)
async def update_me(request: UpdateProfileRequest, uid: str = Depends(get_current_user_id)):
    return await state.users.update_profile(uid, **request.model_dump(exclude_none=True))


@router.put("/me/status")
async def set_my_status(request: StatusRequest, uid: str = Depends(get_current_user_id)):
    """Overwrite the caller's online/offline flag and last-seen time."""
    await state.presence.set_status(uid, request.status)
    return {"status": request.status}


@router.get("/search", response_model=List[User])
async def search_users(q: str = "", uid: str = Depends(get_current_user_id)):
    return await state.users.search_users(q)


@router.get("/{user_id}", response_model=User)
async def get_user(user_id: str, uid: str = Depends(get_current_user_id)):
    user = await state.users.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user
