from fastapi import APIRouter, Depends

from auth.authenticate import authenticate
from models import SocialIntegration, User
from services.smart_ai import is_entitled

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me", response_model=dict)
async def get_current_user(user: User = Depends(authenticate)):
    """Session check for the dashboard: who is signed in and which features their plan unlocks."""
    instagram = await SocialIntegration.filter(user=user, platform="instagram", is_connected=True).first()
    return {
        "id": user.id,
        "email": user.email,
        "firstname": user.firstname,
        "lastname": user.lastname,
        "store_id": user.store_id,
        "plan": user.plan,
        "is_admin": user.is_admin,
        "smart_ai": is_entitled(user),
        "instagram": {
            "connected": instagram is not None,
            "username": instagram.platform_username if instagram else None,
        },
    }
