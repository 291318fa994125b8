import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WasteType(str, Enum):
    FOOD = "food"
    PLASTIC = "plastic"
    PAPER = "paper"
    GLASS = "glass"
    METAL = "metal"
    ELECTRONIC = "electronic"
    TEXTILE = "textile"
    ORGANIC = "organic"
    HAZARDOUS = "hazardous"
    PLASTIC_FILM = "plastic_film"
    BATTERIES = "batteries"
    LIGHT_BULBS = "light_bulbs"
    PAINT = "paint"
    CERAMICS = "ceramics"
    CHIP_BAGS = "chip_bags"
    OTHER = "other"


class DisposalCategory(str, Enum):
    RECYCLING = "recycling"
    COMPOSTING = "composting"
    LANDFILL = "landfill"
    OTHER = "other"


def local_now() -> datetime:
    """Timezone-aware 'now' in the device's local zone."""
    return datetime.now().astimezone()


def new_record_id() -> str:
    return f"item-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def default_disposal_category(recyclable: bool, compostable: bool) -> DisposalCategory:
    if recyclable:
        return DisposalCategory.RECYCLING
    if compostable:
        return DisposalCategory.COMPOSTING
    return DisposalCategory.LANDFILL


class AIAnalysis(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    material: str
    environment_score: float = Field(ge=1, le=10, alias="environmentScore")
    confidence: float = Field(ge=0, le=1)
    carbon_footprint_kg: float = Field(0.0, ge=0, alias="carbonFootprintKg", allow_inf_nan=False)
    suggestions: List[str] = Field(default_factory=list)


class AnalysisResult(BaseModel):
    """Structured answer expected back from the vision model. All ten fields are required."""

    model_config = ConfigDict(populate_by_name=True)

    item_name: str = Field(..., min_length=1, alias="itemName", description="Short name of the item")
    quantity: int = Field(..., ge=1, description="How many items are visible")
    weight_grams: float = Field(..., ge=0, alias="weightGrams", allow_inf_nan=False, description="Estimated total weight in grams")
    material: str = Field(..., description="Primary material")
    environment_score: float = Field(..., ge=1, le=10, alias="environmentScore", description="1 (harmful) to 10 (benign)")
    recyclable: bool
    compostable: bool
    carbon_footprint_kg: float = Field(..., ge=0, alias="carbonFootprintKg", allow_inf_nan=False)
    suggestions: List[str]
    confidence: float = Field(..., ge=0, le=1)

    def to_ai_analysis(self) -> AIAnalysis:
        return AIAnalysis(
            material=self.material,
            environment_score=self.environment_score,
            confidence=self.confidence,
            carbon_footprint_kg=self.carbon_footprint_kg,
            suggestions=list(self.suggestions),
        )


class ScanRecord(BaseModel):
    """One classified waste item. Records are created and deleted, never edited."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(default_factory=new_record_id)
    waste_type: WasteType = Field(alias="wasteType")
    disposal_category: DisposalCategory = Field(alias="disposalCategory")
    weight_grams: float = Field(ge=0, alias="weightGrams", allow_inf_nan=False)
    recyclable: bool = False
    compostable: bool = False
    timestamp: datetime = Field(default_factory=local_now)
    ai_analysis: Optional[AIAnalysis] = Field(None, alias="aiAnalysis")
    item_name: Optional[str] = Field(None, alias="itemName")
    description: Optional[str] = None
    image_url: Optional[str] = Field(None, alias="imageUrl")
    quantity: int = Field(1, ge=1)

    @field_validator("timestamp")
    @classmethod
    def _assume_local_zone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.astimezone()
        return value

    @classmethod
    def from_analysis(
        cls,
        analysis: AnalysisResult,
        waste_type: WasteType,
        disposal_category: Optional[DisposalCategory] = None,
        timestamp: Optional[datetime] = None,
        image_url: Optional[str] = None,
    ) -> "ScanRecord":
        if disposal_category is None:
            disposal_category = default_disposal_category(analysis.recyclable, analysis.compostable)
        return cls(
            waste_type=waste_type,
            disposal_category=disposal_category,
            weight_grams=analysis.weight_grams,
            recyclable=analysis.recyclable,
            compostable=analysis.compostable,
            timestamp=timestamp or local_now(),
            ai_analysis=analysis.to_ai_analysis(),
            item_name=analysis.item_name,
            image_url=image_url,
            quantity=analysis.quantity,
        )


def _zero_by_type() -> Dict[WasteType, float]:
    return {waste_type: 0.0 for waste_type in WasteType}


def _zero_by_category() -> Dict[DisposalCategory, float]:
    return {category: 0.0 for category in DisposalCategory}


class AggregateStats(BaseModel):
    """Roll-up derived from the full record collection. Never a source of truth."""

    model_config = ConfigDict(populate_by_name=True)

    total_scans: int = Field(0, ge=0, alias="totalScans")
    total_weight_grams: float = Field(0.0, ge=0, alias="totalWeightGrams")
    weekly_weight_grams: float = Field(0.0, ge=0, alias="weeklyWeightGrams")
    monthly_weight_grams: float = Field(0.0, ge=0, alias="monthlyWeightGrams")
    recycling_rate_pct: float = Field(0.0, ge=0, le=100, alias="recyclingRatePct")
    composting_rate_pct: float = Field(0.0, ge=0, le=100, alias="compostingRatePct")
    streak_days: int = Field(0, ge=0, alias="streakDays")
    co2_saved_kg: float = Field(0.0, ge=0, alias="co2SavedKg")
    waste_by_type: Dict[WasteType, float] = Field(default_factory=_zero_by_type, alias="wasteByType")
    waste_by_category: Dict[DisposalCategory, float] = Field(default_factory=_zero_by_category, alias="wasteByCategory")


class WasteGoal(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: Literal["reduce", "recycle", "compost"]
    target: float = Field(..., gt=0)
    current: float = Field(0.0, ge=0)
    period: Literal["daily", "weekly", "monthly"]
    start_date: datetime = Field(alias="startDate")
    end_date: datetime = Field(alias="endDate")
