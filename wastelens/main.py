import asyncio
import logging
import os
import uuid
from functools import lru_cache
from typing import Annotated, Optional

import uvicorn
from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, ConfigDict, Field

from . import classifier, config
from . import db_helper as db
from .classes.profile import DisposalLocation, ProfileUpdate, UserProfile
from .classes.rewards import ShippingAddress
from .classes.waste import AnalysisResult, DisposalCategory, ScanRecord, WasteType, default_disposal_category
from .errors import CollaboratorError, Result, ValidationError
from .goals import apply_goal_progress, default_goals
from .local_store import LocalStore
from .rewards import get_available_rewards, get_reward_by_id
from .session import Identity, ScanSession, SessionRegistry

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Waste Lens API")


class AddItemRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    waste_type: WasteType = Field(alias="wasteType")
    disposal_category: Optional[DisposalCategory] = Field(None, alias="disposalCategory")
    analysis: Optional[AnalysisResult] = None
    weight_grams: Optional[float] = Field(None, ge=0, alias="weightGrams")
    recyclable: bool = False
    compostable: bool = False
    item_name: Optional[str] = Field(None, alias="itemName")
    description: Optional[str] = None
    image_url: Optional[str] = Field(None, alias="imageUrl")

    def to_record(self) -> ScanRecord:
        if self.analysis is not None:
            record = ScanRecord.from_analysis(self.analysis, self.waste_type, self.disposal_category, image_url=self.image_url)
            if self.description:
                record = record.model_copy(update={"description": self.description})
            return record
        if self.weight_grams is None:
            raise ValidationError(["weightGrams is required when no analysis is given"])
        return ScanRecord(
            waste_type=self.waste_type,
            disposal_category=self.disposal_category or default_disposal_category(self.recyclable, self.compostable),
            weight_grams=self.weight_grams,
            recyclable=self.recyclable,
            compostable=self.compostable,
            item_name=self.item_name,
            description=self.description,
            image_url=self.image_url,
        )


class RedemptionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reward_id: str = Field(alias="rewardId")
    shipping_address: ShippingAddress = Field(alias="shippingAddress")


@lru_cache(maxsize=1)
def get_local_store() -> LocalStore:
    return LocalStore()


@lru_cache(maxsize=1)
def get_registry() -> SessionRegistry:
    return SessionRegistry(db.FirestoreRecordStore(), backup=get_local_store())


def get_vision_client():
    return classifier.get_client()


async def get_identity(id_token: Optional[str] = None, anonymous_id: Optional[str] = None) -> Identity:
    if id_token:
        user_id = await asyncio.to_thread(db.get_uid_from_id_token, id_token)
        if not user_id:
            raise HTTPException(status_code=401, detail="Invalid ID token")
        return Identity.authenticated(user_id)
    if anonymous_id:
        return Identity.anonymous(anonymous_id)
    raise HTTPException(status_code=400, detail="id_token or anonymous_id is required")


def unwrap(result: Result):
    if result.ok:
        return result.value
    error = result.error
    if isinstance(error, ValidationError):
        raise HTTPException(status_code=400, detail={"errors": error.messages})
    if isinstance(error, CollaboratorError):
        raise HTTPException(status_code=502, detail=f"{error.collaborator} unavailable: {error.message}")
    raise HTTPException(status_code=500, detail=str(error))


async def get_session(
    identity: Annotated[Identity, Depends(get_identity)],
    registry: Annotated[SessionRegistry, Depends(get_registry)],
) -> ScanSession:
    return unwrap(await registry.get(identity))


@app.get("/")
async def root():
    return {"message": "Waste Lens API is running"}


# Classification

@app.post("/classify-waste-image/")
async def classify_waste_image(file: Annotated[UploadFile, File()], client=Depends(get_vision_client)):
    image = await file.read()
    mime_type = file.content_type or "image/jpeg"
    result = await asyncio.to_thread(classifier.classify_waste_image, image, mime_type, client)
    analysis, banner = classifier.with_fallback(result)
    return {
        "analysis": analysis.model_dump(by_alias=True),
        "fallback": banner is not None,
        "banner": banner,
    }


@app.post("/refine-classification/")
async def refine_classification(
    file: Annotated[UploadFile, File()],
    previous: Annotated[str, Form()],
    feedback: Annotated[str, Form()],
    client=Depends(get_vision_client),
):
    parsed = classifier.parse_analysis(previous)
    previous_analysis = unwrap(parsed)
    image = await file.read()
    mime_type = file.content_type or "image/jpeg"
    result = await asyncio.to_thread(
        classifier.refine_classification, previous_analysis, feedback, image, mime_type, client
    )
    if not result.ok:
        # On failure the previous analysis stands
        logger.warning(f"Refinement failed, keeping previous analysis: {result.error}")
        return {"analysis": previous_analysis.model_dump(by_alias=True), "refined": False, "error": str(result.error)}
    return {"analysis": result.value.model_dump(by_alias=True), "refined": True, "error": None}


@app.post("/upload-scan-image/")
async def upload_scan_image(file: Annotated[UploadFile, File()]):
    try:
        content = await file.read()
        image_url = await asyncio.to_thread(
            db.upload_to_bucket,
            f"scans/{uuid.uuid4()}_{file.filename}",
            content,
            file.content_type or "application/octet-stream",
        )
        return {"image_url": image_url}
    except Exception as e:
        logger.error(f"Error uploading image: {e}")
        raise HTTPException(status_code=500, detail=f"Error uploading image: {str(e)}")


# Items

@app.get("/items/")
async def list_items(session: Annotated[ScanSession, Depends(get_session)]):
    return {"items": [record.model_dump(mode="json", by_alias=True) for record in session.records]}


@app.post("/items/", status_code=201)
async def add_item(request: AddItemRequest, session: Annotated[ScanSession, Depends(get_session)]):
    try:
        record = request.to_record()
    except ValidationError as e:
        raise HTTPException(status_code=400, detail={"errors": e.messages})
    snapshot = unwrap(await session.add_record(record))
    return {
        "item": record.model_dump(mode="json", by_alias=True),
        "stats": snapshot.stats.model_dump(mode="json", by_alias=True),
        "points": snapshot.points.model_dump(mode="json", by_alias=True),
        "completedQuests": [quest.model_dump(mode="json", by_alias=True) for quest in snapshot.newly_completed],
    }


@app.delete("/items/{item_id}")
async def delete_item(item_id: str, session: Annotated[ScanSession, Depends(get_session)]):
    deleted = unwrap(await session.remove_record(item_id))
    if not deleted:
        raise HTTPException(status_code=404, detail="Item not found")
    return {"message": "Item deleted successfully", "item_id": item_id}


# Progress

@app.get("/stats/")
async def get_stats(session: Annotated[ScanSession, Depends(get_session)]):
    return session.snapshot().stats.model_dump(mode="json", by_alias=True)


@app.get("/points/")
async def get_points(session: Annotated[ScanSession, Depends(get_session)]):
    return session.snapshot().points.model_dump(mode="json", by_alias=True)


@app.get("/quests/")
async def get_quests(session: Annotated[ScanSession, Depends(get_session)]):
    return {"quests": [quest.model_dump(mode="json", by_alias=True) for quest in session.snapshot().quests]}


@app.get("/goals/")
async def get_goals(
    session: Annotated[ScanSession, Depends(get_session)],
    local_store: Annotated[LocalStore, Depends(get_local_store)],
):
    owner_key = session.identity.owner_key
    snapshot = session.snapshot()
    goals = local_store.load_goals(owner_key) or default_goals()
    goals = apply_goal_progress(goals, snapshot.stats, snapshot.counters)
    local_store.save_goals(goals, owner_key)
    return {"goals": [goal.model_dump(mode="json", by_alias=True) for goal in goals]}


# Rewards

@app.get("/rewards/")
async def list_rewards():
    return {"rewards": [reward.model_dump(by_alias=True) for reward in get_available_rewards()]}


@app.get("/rewards/{reward_id}")
async def get_reward(reward_id: str):
    reward = get_reward_by_id(reward_id)
    if reward is None:
        raise HTTPException(status_code=404, detail="Reward not found")
    return reward.model_dump(by_alias=True)


@app.get("/redemptions/")
async def list_redemptions(session: Annotated[ScanSession, Depends(get_session)]):
    return {"redemptions": [r.model_dump(mode="json", by_alias=True) for r in session.redemptions]}


@app.post("/redemptions/", status_code=201)
async def redeem_reward(request: RedemptionRequest, session: Annotated[ScanSession, Depends(get_session)]):
    reward = get_reward_by_id(request.reward_id)
    if reward is None:
        raise HTTPException(status_code=404, detail="Reward not found")
    redemption = unwrap(await session.redeem(reward, request.shipping_address))
    return {
        "redemption": redemption.model_dump(mode="json", by_alias=True),
        "points": session.snapshot().points.model_dump(mode="json", by_alias=True),
    }


# Identity

@app.get("/anonymous-id/")
async def get_anonymous_id(
    device_id: str,
    local_store: Annotated[LocalStore, Depends(get_local_store)],
):
    return {"anonymous_id": local_store.get_or_create_anonymous_id(device_id)}


@app.post("/associate-anonymous/")
async def associate_anonymous(
    id_token: str,
    anonymous_id: str,
    registry: Annotated[SessionRegistry, Depends(get_registry)],
    local_store: Annotated[LocalStore, Depends(get_local_store)],
):
    user_id = await asyncio.to_thread(db.get_uid_from_id_token, id_token)
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid ID token")
    summary = unwrap(await registry.sign_in(anonymous_id, user_id))

    # Flags set before signing in follow the user onto their profile
    flags = {}
    if local_store.has_completed_onboarding(anonymous_id):
        flags["onboardingCompleted"] = True
    if local_store.has_seen_guidelines(anonymous_id):
        flags["guidelinesSeen"] = True
    if flags:
        unwrap(await asyncio.to_thread(registry.store.update_profile, user_id, flags))

    return {
        "message": "Records associated successfully",
        "moved": summary.moved,
        "synced": summary.synced,
        "user_id": user_id,
    }


# Profile

LOCAL_PROFILE_FIELDS = {"onboardingCompleted", "guidelinesSeen"}


async def load_profile(identity: Identity, registry: SessionRegistry, local_store: LocalStore) -> UserProfile:
    if identity.is_anonymous:
        return UserProfile(
            user_id=identity.owner_key,
            onboarding_completed=local_store.has_completed_onboarding(identity.owner_key),
            guidelines_seen=local_store.has_seen_guidelines(identity.owner_key),
        )
    profile = unwrap(await asyncio.to_thread(registry.store.get_profile, identity.user_id))
    return profile or UserProfile(user_id=identity.user_id)


async def apply_profile_update(
    update: ProfileUpdate,
    identity: Identity,
    registry: SessionRegistry,
    local_store: LocalStore,
) -> UserProfile:
    changes = update.changes()
    if identity.is_anonymous and set(changes) - LOCAL_PROFILE_FIELDS:
        raise HTTPException(status_code=401, detail="Sign in to update your profile")
    if update.onboarding_completed:
        local_store.mark_onboarding_completed(identity.owner_key)
    if update.guidelines_seen:
        local_store.set_guidelines_seen(identity.owner_key)

    if identity.is_anonymous or not changes:
        return await load_profile(identity, registry, local_store)
    return unwrap(await asyncio.to_thread(registry.store.update_profile, identity.user_id, changes))


@app.get("/profile/")
async def get_profile(
    identity: Annotated[Identity, Depends(get_identity)],
    registry: Annotated[SessionRegistry, Depends(get_registry)],
    local_store: Annotated[LocalStore, Depends(get_local_store)],
):
    profile = await load_profile(identity, registry, local_store)
    return profile.model_dump(by_alias=True)


@app.patch("/profile/")
async def update_profile(
    update: ProfileUpdate,
    identity: Annotated[Identity, Depends(get_identity)],
    registry: Annotated[SessionRegistry, Depends(get_registry)],
    local_store: Annotated[LocalStore, Depends(get_local_store)],
):
    profile = await apply_profile_update(update, identity, registry, local_store)
    return profile.model_dump(by_alias=True)


@app.post("/onboarding/complete/")
async def complete_onboarding(
    identity: Annotated[Identity, Depends(get_identity)],
    registry: Annotated[SessionRegistry, Depends(get_registry)],
    local_store: Annotated[LocalStore, Depends(get_local_store)],
):
    update = ProfileUpdate(onboarding_completed=True)
    profile = await apply_profile_update(update, identity, registry, local_store)
    return profile.model_dump(by_alias=True)


@app.post("/guidelines/seen/")
async def mark_guidelines_seen(
    identity: Annotated[Identity, Depends(get_identity)],
    registry: Annotated[SessionRegistry, Depends(get_registry)],
    local_store: Annotated[LocalStore, Depends(get_local_store)],
):
    update = ProfileUpdate(guidelines_seen=True)
    profile = await apply_profile_update(update, identity, registry, local_store)
    return profile.model_dump(by_alias=True)


# Disposal locations

@app.post("/disposal-locations/", status_code=201)
async def save_disposal_location(
    location: DisposalLocation,
    identity: Annotated[Identity, Depends(get_identity)],
    registry: Annotated[SessionRegistry, Depends(get_registry)],
):
    location = location.model_copy(update={"owner_key": identity.owner_key})
    location_id = unwrap(await asyncio.to_thread(registry.store.save_disposal_location, location))
    return {"id": location_id, "location": location.model_dump(mode="json", by_alias=True)}


if __name__ == "__main__":
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
