from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Reward(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    title: str
    description: str
    points_cost: int = Field(..., gt=0, alias="pointsCost")
    category: Literal["eco", "discount", "experience", "premium"]
    image_url: Optional[str] = Field(None, alias="imageUrl")
    available: bool = True
    in_stock: int = Field(..., ge=0, alias="inStock")
    estimated_delivery: str = Field(..., alias="estimatedDelivery", description='e.g. "5-7 business days"')
    features: List[str] = Field(default_factory=list)
    value: Optional[str] = Field(None, description='e.g. "$25 value"')
    popularity: int = Field(..., ge=1, le=5)


class ShippingAddress(BaseModel):
    # Fields stay lenient here; validate_shipping_address reports what is missing.
    model_config = ConfigDict(populate_by_name=True)

    full_name: str = Field("", alias="fullName")
    address_line1: str = Field("", alias="addressLine1")
    address_line2: Optional[str] = Field(None, alias="addressLine2")
    city: str = ""
    state: str = ""
    zip_code: str = Field("", alias="zipCode")
    country: str = "United States"
    phone_number: Optional[str] = Field(None, alias="phoneNumber")


class RedemptionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


class Redemption(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    reward_id: str = Field(alias="rewardId")
    owner_key: Optional[str] = Field(None, alias="ownerKey")
    points_cost: int = Field(..., gt=0, alias="pointsCost")
    shipping_address: ShippingAddress = Field(alias="shippingAddress")
    status: RedemptionStatus = RedemptionStatus.PENDING
    tracking_number: str = Field(alias="trackingNumber")
    redeemed_at: datetime = Field(alias="redeemedAt")
    estimated_delivery_date: datetime = Field(alias="estimatedDeliveryDate")


class UserPoints(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_earned: int = Field(0, ge=0, alias="totalEarned")
    current_balance: int = Field(0, alias="currentBalance")
    total_spent: int = Field(0, ge=0, alias="totalSpent")
    lifetime_rank: str = Field("Eco Beginner", alias="lifetimeRank")
    weekly_earned: int = Field(0, ge=0, alias="weeklyEarned")
    monthly_earned: int = Field(0, ge=0, alias="monthlyEarned")


class Quest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    description: str
    type: Literal["daily", "weekly", "monthly", "milestone"]
    category: Literal["scanning", "environmental", "streak", "special"]
    counter: str = Field(..., description="QuestCounters field this quest tracks")
    target: float = Field(..., gt=0)
    progress: float = Field(0, ge=0)
    points_reward: int = Field(..., ge=0, alias="pointsReward")
    completed: bool = False
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")
    icon: Optional[str] = None
    difficulty: Literal["easy", "medium", "hard"]
