from fastapi import APIRouter, HTTPException, Depends
from auth.authenticate import authenticate, require_admin
from pydantic import BaseModel
from models import SocialIntegration, User
from services.keyword_index import keyword_index

router = APIRouter(prefix="/users", tags=["users"])


class UserCreate(BaseModel):
    email: str
    firstname: str
    lastname: str | None = None
    store_id: str | None = None
    plan: str = "free"

class UserPlan(BaseModel):
    email: str
    plan: str

class UserAdminize(BaseModel):
    email: str

class IntegrationConnect(BaseModel):
    platform_user_id: str
    access_token: str
    platform_username: str | None = None


def _user_out(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "store_id": user.store_id,
        "plan": user.plan,
        "is_admin": user.is_admin,
    }


async def _target(email: str) -> User:
    target_user = await User.get_or_none(email=email.strip().lower())
    if not target_user:
        raise HTTPException(status_code=404, detail="User not found")
    return target_user


## Provisioning

@router.post("/", response_model=dict)
async def create_user(payload: UserCreate, admin: User = Depends(require_admin)):
    email = payload.email.strip().lower()
    if await User.filter(email=email).exists():
        raise HTTPException(status_code=400, detail="User already exists")

    user = await User.create(
        email=email,
        firstname=payload.firstname,
        lastname=payload.lastname,
        store_id=payload.store_id,
        plan=payload.plan.strip().lower(),
    )
    return _user_out(user)


@router.post("/plan", response_model=dict)
async def set_plan(payload: UserPlan, admin: User = Depends(require_admin)):
    target_user = await _target(payload.email)
    target_user.plan = payload.plan.strip().lower()  # type: ignore[assignment]
    await target_user.save(update_fields=["plan", "updated_at"])
    return _user_out(target_user)


## Permissions

@router.post("/adminize", response_model=dict)
async def adminize_user(payload: UserAdminize, admin: User = Depends(require_admin)):
    target_user = await _target(payload.email)
    if target_user.is_admin:
        raise HTTPException(status_code=409, detail="User is already admin")
    if target_user.disabled:
        raise HTTPException(status_code=400, detail="User is disabled")

    target_user.is_admin = True  # type: ignore[assignment]
    await target_user.save()
    return _user_out(target_user)


@router.post("/deadminize", response_model=dict)
async def deadminize_user(payload: UserAdminize, admin: User = Depends(require_admin)):
    target_user = await _target(payload.email)
    if target_user.id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot deadminize yourself")
    if not target_user.is_admin:
        raise HTTPException(status_code=409, detail="User is not an admin")

    target_user.is_admin = False  # type: ignore[assignment]
    await target_user.save()
    return _user_out(target_user)


## Instagram account

@router.put("/me/instagram", response_model=dict)
async def connect_instagram(payload: IntegrationConnect, user: User = Depends(authenticate)):
    integration = await SocialIntegration.filter(user=user, platform="instagram").first()
    if integration is None:
        integration = await SocialIntegration.create(user=user, platform="instagram", **payload.model_dump())
    else:
        integration.platform_user_id = payload.platform_user_id  # type: ignore[assignment]
        integration.platform_username = payload.platform_username  # type: ignore[assignment]
        integration.access_token = payload.access_token  # type: ignore[assignment]
        integration.is_connected = True  # type: ignore[assignment]
        await integration.save()
    keyword_index.invalidate()
    return {
        "id": integration.id,
        "platform_user_id": integration.platform_user_id,
        "platform_username": integration.platform_username,
        "is_connected": integration.is_connected,
    }


@router.delete("/me/instagram", response_model=dict)
async def disconnect_instagram(user: User = Depends(authenticate)):
    updated = await SocialIntegration.filter(user=user, platform="instagram").update(is_connected=False)
    if not updated:
        raise HTTPException(status_code=404, detail="No Instagram account connected")
    keyword_index.invalidate()
    return {"status": "disconnected"}
