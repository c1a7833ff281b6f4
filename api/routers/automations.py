from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from tortoise.exceptions import IntegrityError

from auth.authenticate import authenticate
from models import (
    Automation,
    AutomationKeyword,
    AutomationListener,
    AutomationPost,
    AutomationTrigger,
    ChatHistory,
    User,
)
from services.keyword_index import keyword_index, normalize_keyword

router = APIRouter(prefix="/automations", tags=["automations"])


class AutomationCreate(BaseModel):
    name: str = "Untitled"


class AutomationUpdate(BaseModel):
    name: str | None = None
    active: bool | None = None


class KeywordCreate(BaseModel):
    keyword: str = Field(min_length=1)


class TriggerSave(BaseModel):
    types: list[Literal["DM", "COMMENT"]] = Field(min_length=1)


class ListenerSave(BaseModel):
    listener: Literal["MESSAGE", "SMART_AI"] = "MESSAGE"
    prompt: str
    comment_reply: str | None = None


class PostIn(BaseModel):
    post_id: str
    caption: str | None = None
    media: str | None = None
    media_type: str = "IMAGE"


class PostsSave(BaseModel):
    posts: list[PostIn] = Field(min_length=1)


async def _owned(automation_id: int, user: User) -> Automation:
    automation = await Automation.get_or_none(id=automation_id)
    if automation is None:
        raise HTTPException(status_code=404, detail="Automation not found")
    if automation.user_id != user.id and not user.is_admin:  # type: ignore[attr-defined]
        raise HTTPException(status_code=403, detail="Not your automation")
    return automation


async def _automation_out(automation: Automation) -> dict:
    keywords = await AutomationKeyword.filter(automation=automation).order_by("id")
    triggers = await AutomationTrigger.filter(automation=automation).values_list("type", flat=True)
    listener = await AutomationListener.filter(automation=automation).first()
    posts = await AutomationPost.filter(automation=automation).order_by("id")
    return {
        "id": automation.id,
        "name": automation.name,
        "active": automation.active,
        "keywords": [{"id": k.id, "word": k.word} for k in keywords],
        "triggers": list(triggers),
        "listener": (
            {
                "listener": listener.listener,
                "prompt": listener.prompt,
                "comment_reply": listener.comment_reply,
                "dm_count": listener.dm_count,
                "comment_count": listener.comment_count,
            }
            if listener
            else None
        ),
        "posts": [{"post_id": p.post_id, "caption": p.caption, "media_type": p.media_type} for p in posts],
    }


@router.get("", response_model=list[dict])
async def list_automations(user: User = Depends(authenticate)):
    automations = await Automation.filter(user=user).order_by("-created_at")
    return [await _automation_out(a) for a in automations]


@router.post("", response_model=dict)
async def create_automation(payload: AutomationCreate, user: User = Depends(authenticate)):
    automation = await Automation.create(user=user, name=payload.name)
    return await _automation_out(automation)


@router.get("/{automation_id}", response_model=dict)
async def get_automation(automation_id: int, user: User = Depends(authenticate)):
    return await _automation_out(await _owned(automation_id, user))


@router.patch("/{automation_id}", response_model=dict)
async def update_automation(automation_id: int, payload: AutomationUpdate, user: User = Depends(authenticate)):
    automation = await _owned(automation_id, user)
    if payload.name is not None:
        automation.name = payload.name  # type: ignore[assignment]
    if payload.active is not None:
        automation.active = payload.active  # type: ignore[assignment]
        keyword_index.invalidate()
    await automation.save()
    return await _automation_out(automation)


@router.delete("/{automation_id}", response_model=dict)
async def delete_automation(automation_id: int, user: User = Depends(authenticate)):
    automation = await _owned(automation_id, user)
    await automation.delete()
    keyword_index.invalidate()
    return {"status": "deleted", "id": automation_id}


## Keywords

@router.post("/{automation_id}/keywords", response_model=dict)
async def add_keyword(automation_id: int, payload: KeywordCreate, user: User = Depends(authenticate)):
    automation = await _owned(automation_id, user)
    word = normalize_keyword(payload.keyword)
    if not word:
        raise HTTPException(status_code=400, detail="Keyword must contain letters or digits")
    try:
        keyword = await AutomationKeyword.create(automation=automation, word=word)
    except IntegrityError:
        raise HTTPException(status_code=409, detail="Keyword already exists")
    keyword_index.invalidate()
    return {"id": keyword.id, "word": keyword.word}


@router.delete("/{automation_id}/keywords/{keyword_id}", response_model=dict)
async def delete_keyword(automation_id: int, keyword_id: int, user: User = Depends(authenticate)):
    automation = await _owned(automation_id, user)
    deleted = await AutomationKeyword.filter(id=keyword_id, automation=automation).delete()
    if not deleted:
        raise HTTPException(status_code=404, detail="Keyword not found")
    keyword_index.invalidate()
    return {"status": "deleted", "id": keyword_id}


## Trigger / listener / posts

@router.put("/{automation_id}/triggers", response_model=dict)
async def save_triggers(automation_id: int, payload: TriggerSave, user: User = Depends(authenticate)):
    automation = await _owned(automation_id, user)
    await AutomationTrigger.filter(automation=automation).delete()
    for trigger_type in dict.fromkeys(payload.types):
        await AutomationTrigger.create(automation=automation, type=trigger_type)
    return await _automation_out(automation)


@router.put("/{automation_id}/listener", response_model=dict)
async def save_listener(automation_id: int, payload: ListenerSave, user: User = Depends(authenticate)):
    automation = await _owned(automation_id, user)
    listener = await AutomationListener.filter(automation=automation).first()
    if listener is None:
        await AutomationListener.create(automation=automation, **payload.model_dump())
    else:
        listener.listener = payload.listener  # type: ignore[assignment]
        listener.prompt = payload.prompt  # type: ignore[assignment]
        listener.comment_reply = payload.comment_reply  # type: ignore[assignment]
        await listener.save()
    return await _automation_out(automation)


@router.put("/{automation_id}/posts", response_model=dict)
async def save_posts(automation_id: int, payload: PostsSave, user: User = Depends(authenticate)):
    automation = await _owned(automation_id, user)
    await AutomationPost.filter(automation=automation).delete()
    for post in payload.posts:
        await AutomationPost.create(automation=automation, **post.model_dump())
    return await _automation_out(automation)


@router.get("/{automation_id}/chat-history", response_model=list[dict])
async def get_chat_history(automation_id: int, sender_id: str, user: User = Depends(authenticate)):
    automation = await _owned(automation_id, user)
    turns = await ChatHistory.filter(automation=automation, sender_id=sender_id).order_by("id")
    return [
        {
            "id": t.id,
            "role": t.role,
            "message": t.message,
            "created_at": t.created_at.isoformat() if t.created_at else None,
        }
        for t in turns
    ]
