import logging
import random
import re
import string
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional

from .classes.rewards import Redemption, RedemptionStatus, Reward, ShippingAddress
from .classes.waste import local_now
from .errors import Err, Ok, Result, ValidationError

logger = logging.getLogger(__name__)

ZIP_CODE_PATTERN = re.compile(r"^\d{5}(-\d{4})?$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s\-\(\)]+$")
DELIVERY_PATTERN = re.compile(r"(\d+)-(\d+)\s+business\s+days", re.IGNORECASE)
DEFAULT_DELIVERY_DAYS = 7
TRACKING_PREFIX = "WL"
_BASE36 = string.digits + string.ascii_uppercase

REWARDS_CATALOG = [
    Reward(
        id="eco-water-bottle",
        title="Eco Water Bottle",
        description="Premium stainless steel water bottle made from recycled materials",
        points_cost=500,
        category="eco",
        image_url="https://images.pexels.com/photos/3735218/pexels-photo-3735218.jpeg",
        in_stock=25,
        estimated_delivery="5-7 business days",
        features=[
            "500ml capacity",
            "Made from recycled stainless steel",
            "Keeps drinks cold for 24 hours",
            "BPA-free and leak-proof",
            "Dishwasher safe",
        ],
        value="$35 value",
        popularity=5,
    ),
    Reward(
        id="reusable-mesh-bags",
        title="Reusable Mesh Bags Set",
        description="Set of 3 organic cotton mesh bags for plastic-free shopping",
        points_cost=300,
        category="eco",
        image_url="https://images.pexels.com/photos/4099354/pexels-photo-4099354.jpeg",
        in_stock=50,
        estimated_delivery="3-5 business days",
        features=[
            "Set of 3 different sizes",
            "100% organic cotton",
            "Machine washable",
            "Drawstring closure",
            "Perfect for fruits and vegetables",
        ],
        value="$25 value",
        popularity=4,
    ),
    Reward(
        id="bamboo-utensil-set",
        title="Bamboo Utensil Set",
        description="Portable bamboo utensil set with carrying case",
        points_cost=400,
        category="eco",
        image_url="https://images.pexels.com/photos/4099238/pexels-photo-4099238.jpeg",
        in_stock=30,
        estimated_delivery="5-7 business days",
        features=[
            "Fork, knife, spoon, and chopsticks",
            "Sustainable bamboo construction",
            "Compact carrying case",
            "Perfect for travel and work",
            "Easy to clean",
        ],
        value="$30 value",
        popularity=4,
    ),
    Reward(
        id="organic-coffee-beans",
        title="Organic Coffee Beans",
        description="Fair-trade organic coffee beans from sustainable farms",
        points_cost=600,
        category="premium",
        image_url="https://images.pexels.com/photos/894695/pexels-photo-894695.jpeg",
        in_stock=20,
        estimated_delivery="3-5 business days",
        features=[
            "1lb bag of premium beans",
            "Fair-trade certified",
            "Organic and sustainably grown",
            "Medium roast profile",
            "Freshly roasted to order",
        ],
        value="$40 value",
        popularity=5,
    ),
    Reward(
        id="eco-notebook",
        title="Recycled Paper Notebook",
        description="Beautiful notebook made from 100% recycled paper",
        points_cost=250,
        category="eco",
        image_url="https://images.pexels.com/photos/1925536/pexels-photo-1925536.jpeg",
        in_stock=40,
        estimated_delivery="3-5 business days",
        features=[
            "100% recycled paper",
            "Hardcover with elastic band",
            "200 lined pages",
            "Bookmark ribbon",
            "Eco-friendly packaging",
        ],
        value="$20 value",
        popularity=3,
    ),
    Reward(
        id="plant-starter-kit",
        title="Indoor Plant Starter Kit",
        description="Everything you need to start your indoor garden",
        points_cost=800,
        category="experience",
        image_url="https://images.pexels.com/photos/1084199/pexels-photo-1084199.jpeg",
        in_stock=15,
        estimated_delivery="7-10 business days",
        features=[
            "3 easy-care plant varieties",
            "Biodegradable pots",
            "Organic potting soil",
            "Care instruction guide",
            "Perfect for beginners",
        ],
        value="$50 value",
        popularity=4,
    ),
    Reward(
        id="solar-phone-charger",
        title="Solar Phone Charger",
        description="Portable solar charger for sustainable power on the go",
        points_cost=1200,
        category="premium",
        image_url="https://images.pexels.com/photos/257736/pexels-photo-257736.jpeg",
        in_stock=10,
        estimated_delivery="7-10 business days",
        features=[
            "10,000mAh battery capacity",
            "Solar panel charging",
            "Dual USB ports",
            "Waterproof design",
            "LED flashlight included",
        ],
        value="$75 value",
        popularity=5,
    ),
    Reward(
        id="compost-bin",
        title="Kitchen Compost Bin",
        description="Stylish countertop compost bin with charcoal filter",
        points_cost=700,
        category="eco",
        image_url="https://images.pexels.com/photos/4099355/pexels-photo-4099355.jpeg",
        in_stock=20,
        estimated_delivery="5-7 business days",
        features=[
            "1.3 gallon capacity",
            "Charcoal filter eliminates odors",
            "Stainless steel construction",
            "Dishwasher safe",
            "Includes extra filters",
        ],
        value="$45 value",
        popularity=4,
    ),
]


def get_available_rewards() -> List[Reward]:
    return list(REWARDS_CATALOG)


def get_reward_by_id(reward_id: str) -> Optional[Reward]:
    return next((reward for reward in REWARDS_CATALOG if reward.id == reward_id), None)


def can_afford_reward(current_balance: int, points_cost: int) -> bool:
    return current_balance >= points_cost


def validate_shipping_address(address: ShippingAddress) -> List[str]:
    """Returns human-readable problems with the address; empty means valid."""
    errors = []

    if not (address.full_name or "").strip():
        errors.append("Full name is required")
    if not (address.address_line1 or "").strip():
        errors.append("Address line 1 is required")
    if not (address.city or "").strip():
        errors.append("City is required")
    if not (address.state or "").strip():
        errors.append("State is required")

    zip_code = (address.zip_code or "").strip()
    if not zip_code:
        errors.append("ZIP code is required")
    elif not ZIP_CODE_PATTERN.match(zip_code):
        errors.append("Invalid ZIP code format")

    if not (address.country or "").strip():
        errors.append("Country is required")
    if address.phone_number and not PHONE_PATTERN.match(address.phone_number):
        errors.append("Invalid phone number format")

    return errors


def calculate_delivery_date(delivery_timeframe: str, start: Optional[datetime] = None) -> datetime:
    """
    Walk forward from ``start`` adding the upper bound of an "N-M business
    days" range, skipping Saturdays and Sundays. Falls back to 7 calendar days.
    """
    delivery_date = start or local_now()
    match = DELIVERY_PATTERN.search(delivery_timeframe or "")
    if not match:
        return delivery_date + timedelta(days=DEFAULT_DELIVERY_DAYS)

    max_days = int(match.group(2))
    days_added = 0
    while days_added < max_days:
        delivery_date += timedelta(days=1)
        if delivery_date.weekday() < 5:
            days_added += 1
    return delivery_date


def generate_tracking_number(now: Optional[datetime] = None, rng: Optional[random.Random] = None) -> str:
    now = now or local_now()
    rng = rng or random.Random()
    timestamp = str(int(now.timestamp() * 1000))[-8:]
    suffix = "".join(rng.choice(_BASE36) for _ in range(4))
    return f"{TRACKING_PREFIX}{timestamp}{suffix}"


class RedemptionStep(str, Enum):
    DETAILS = "details"
    ADDRESS = "address"
    CONFIRMATION = "confirmation"
    ABANDONED = "abandoned"


SaveRedemption = Callable[[Redemption], Result]


class RedemptionFlow:
    """
    One redemption attempt: details -> address -> confirmation.

    The Redemption record is created in exactly one place, submit_address,
    and only counts once ``save_redemption`` reports it durably stored.
    Anything that stops earlier leaves the points balance untouched.
    """

    def __init__(
        self,
        reward: Reward,
        save_redemption: SaveRedemption,
        owner_key: Optional[str] = None,
        clock: Callable[[], datetime] = local_now,
        rng: Optional[random.Random] = None,
    ):
        self.reward = reward
        self.owner_key = owner_key
        self.step = RedemptionStep.DETAILS
        self.errors: List[str] = []
        self.redemption: Optional[Redemption] = None
        self._save_redemption = save_redemption
        self._clock = clock
        self._rng = rng

    def can_afford(self, current_balance: int) -> bool:
        return can_afford_reward(current_balance, self.reward.points_cost)

    def proceed_to_address(self, current_balance: int) -> Result:
        if self.step != RedemptionStep.DETAILS:
            return Err(ValidationError([f"Cannot continue from the {self.step.value} step"]))
        if not self.reward.available or self.reward.in_stock <= 0:
            self.errors = [f"{self.reward.title} is out of stock"]
            return Err(ValidationError(self.errors))
        if not self.can_afford(current_balance):
            shortfall = self.reward.points_cost - current_balance
            self.errors = [f"You need {shortfall} more points to redeem this reward."]
            return Err(ValidationError(self.errors))

        self.errors = []
        self.step = RedemptionStep.ADDRESS
        return Ok(self.step)

    def submit_address(self, address: ShippingAddress) -> Result:
        if self.step != RedemptionStep.ADDRESS:
            return Err(ValidationError([f"Cannot submit an address from the {self.step.value} step"]))

        errors = validate_shipping_address(address)
        if errors:
            self.errors = errors
            return Err(ValidationError(errors))

        now = self._clock()
        redemption = Redemption(
            id=f"redemption-{uuid.uuid4().hex}",
            reward_id=self.reward.id,
            owner_key=self.owner_key,
            points_cost=self.reward.points_cost,
            shipping_address=address,
            status=RedemptionStatus.PENDING,
            tracking_number=generate_tracking_number(now, self._rng),
            redeemed_at=now,
            estimated_delivery_date=calculate_delivery_date(self.reward.estimated_delivery, now),
        )

        saved = self._save_redemption(redemption)
        if not saved.ok:
            logger.error(f"Saving redemption for {self.reward.id} failed: {saved.error}")
            self.errors = [str(saved.error)]
            return saved

        self.errors = []
        self.redemption = redemption
        self.step = RedemptionStep.CONFIRMATION
        return Ok(redemption)

    def back(self) -> None:
        if self.step == RedemptionStep.ADDRESS:
            self.step = RedemptionStep.DETAILS
            self.errors = []

    def abandon(self) -> None:
        if self.step != RedemptionStep.CONFIRMATION:
            self.step = RedemptionStep.ABANDONED
            self.errors = []
