from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .waste import local_now


class UserProfile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    email: Optional[str] = None
    full_name: Optional[str] = Field(None, alias="fullName")
    avatar_url: Optional[str] = Field(None, alias="avatarUrl")
    location_city: Optional[str] = Field(None, alias="locationCity")
    location_region: Optional[str] = Field(None, alias="locationRegion")
    location_country: Optional[str] = Field(None, alias="locationCountry")
    onboarding_completed: bool = Field(False, alias="onboardingCompleted")
    guidelines_seen: bool = Field(False, alias="guidelinesSeen")


class ProfileUpdate(BaseModel):
    """Partial profile change; only fields that were sent are applied."""

    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    full_name: Optional[str] = Field(None, alias="fullName")
    avatar_url: Optional[str] = Field(None, alias="avatarUrl")
    location_city: Optional[str] = Field(None, alias="locationCity")
    location_region: Optional[str] = Field(None, alias="locationRegion")
    location_country: Optional[str] = Field(None, alias="locationCountry")
    onboarding_completed: Optional[bool] = Field(None, alias="onboardingCompleted")
    guidelines_seen: Optional[bool] = Field(None, alias="guidelinesSeen")

    def changes(self) -> dict:
        return self.model_dump(by_alias=True, exclude_unset=True)


class DisposalLocation(BaseModel):
    """A drop-off point the user looked up for an item, kept for later."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    location_type: Literal["recycling_center", "store", "facility"] = Field(alias="locationType")
    search_query: str = Field("", alias="searchQuery")
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    owner_key: Optional[str] = Field(None, alias="ownerKey")
    saved_at: datetime = Field(default_factory=local_now, alias="savedAt")
