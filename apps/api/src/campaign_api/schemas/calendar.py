"""Typed reward configuration for calendar events.

Event configuration is stored as a JSON document but is validated into these
models once, when the event is defined, so claim-time code never walks raw
dictionaries. Reward grants are a discriminated union on ``kind``; the stored
``{"vouchers": [...], "raffle_entries": [...]}`` document shape is accepted and
normalized on the way in.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_serializer,
    model_validator,
)


class VoucherGrant(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    kind: Literal["voucher"] = "voucher"
    voucher_type: str = Field(..., validation_alias=AliasChoices("voucher_type", "type"), min_length=1)
    scope: str = "global"
    amount: Decimal | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("scope", mode="before")
    @classmethod
    def _default_scope(cls, value: Any) -> Any:
        if value is None or value == "":
            return "global"
        return value


class RaffleEntryGrant(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    kind: Literal["raffle_entries"] = "raffle_entries"
    raffle_id: str = Field(..., min_length=1)
    count: int = 1
    source: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("count", mode="before")
    @classmethod
    def _at_least_one(cls, value: Any) -> Any:
        if value is None:
            return 1
        return max(int(value), 1)


RewardGrant = Annotated[VoucherGrant | RaffleEntryGrant, Field(discriminator="kind")]


class RewardSet(BaseModel):
    model_config = ConfigDict(extra="ignore")

    grants: list[RewardGrant] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize_document(cls, data: Any) -> Any:
        if data is None:
            return {"grants": []}
        if not isinstance(data, dict) or "grants" in data:
            return data
        grants: list[dict[str, Any]] = []
        for voucher in data.get("vouchers") or []:
            grants.append({**voucher, "kind": "voucher"} if isinstance(voucher, dict) else voucher)
        for entry in data.get("raffle_entries") or []:
            grants.append({**entry, "kind": "raffle_entries"} if isinstance(entry, dict) else entry)
        return {"grants": grants}

    @property
    def vouchers(self) -> list[VoucherGrant]:
        return [grant for grant in self.grants if isinstance(grant, VoucherGrant)]

    @property
    def raffle_entries(self) -> list[RaffleEntryGrant]:
        return [grant for grant in self.grants if isinstance(grant, RaffleEntryGrant)]

    @property
    def is_empty(self) -> bool:
        return not self.grants

    @model_serializer
    def to_document(self) -> dict[str, list[dict[str, Any]]]:
        """Render back into the persisted document shape."""

        return {
            "vouchers": [grant.model_dump(mode="json", exclude={"kind"}) for grant in self.vouchers],
            "raffle_entries": [
                grant.model_dump(mode="json", exclude={"kind"}, exclude_none=True)
                for grant in self.raffle_entries
            ],
        }


class RaffleSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    raffle_id: str | None = None
    entries_on_claim: int | None = Field(None, ge=0)
    bonus_per_referral_today: int = Field(0, ge=0)


class StreakMilestone(BaseModel):
    model_config = ConfigDict(extra="ignore")

    key: str = Field(..., min_length=1)
    threshold: int = Field(..., ge=1)
    rewards: RewardSet = Field(default_factory=RewardSet)


class StreakSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    milestones: list[StreakMilestone] = Field(default_factory=list)


class ChoiceOption(BaseModel):
    model_config = ConfigDict(extra="allow")

    key: str = Field(..., min_length=1)
    title: str | None = None
    description: str | None = None
    rewards: RewardSet = Field(default_factory=RewardSet)


class UpgradeTarget(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    voucher_type: str = Field(..., validation_alias=AliasChoices("voucher_type", "type"))
    scope: str = "global"


class UpgradeCondition(BaseModel):
    model_config = ConfigDict(extra="ignore")

    referrals_today_gte: int = Field(0, ge=0)


class UpgradeReplacement(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    voucher_type: str | None = Field(None, validation_alias=AliasChoices("voucher_type", "type"))
    scope: str | None = None
    amount: Decimal | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConditionalUpgrade(BaseModel):
    model_config = ConfigDict(extra="ignore")

    target: UpgradeTarget
    condition: UpgradeCondition = Field(default_factory=UpgradeCondition)
    replace: UpgradeReplacement = Field(default_factory=UpgradeReplacement)


class SpinSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    wheel: str | None = None


class EventRewardConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    base_rewards: RewardSet = Field(default_factory=RewardSet)
    raffle: RaffleSettings | None = None
    streak: StreakSettings = Field(default_factory=StreakSettings)
    choices: list[ChoiceOption] = Field(default_factory=list)
    conditional_upgrades: list[ConditionalUpgrade] = Field(default_factory=list)
    spin: SpinSettings | None = None
    ui: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _unique_keys(self) -> "EventRewardConfig":
        choice_keys = [choice.key for choice in self.choices]
        if len(choice_keys) != len(set(choice_keys)):
            raise ValueError("choice keys must be unique per event")
        milestone_keys = [milestone.key for milestone in self.streak.milestones]
        if len(milestone_keys) != len(set(milestone_keys)):
            raise ValueError("streak milestone keys must be unique per event")
        return self

    def choice(self, key: str | None) -> ChoiceOption | None:
        if not key:
            return None
        for option in self.choices:
            if option.key == key:
                return option
        return None


class SpinWheelItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    label: str | None = None
    weight: float = Field(1.0, ge=0)
    payload: RewardSet = Field(default_factory=RewardSet)

    @field_validator("weight", mode="before")
    @classmethod
    def _default_weight(cls, value: Any) -> Any:
        return 1.0 if value is None else value


class SpinWheelDefinition(BaseModel):
    items: list[SpinWheelItem] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _positive_total_weight(self) -> "SpinWheelDefinition":
        if not any(item.weight > 0 for item in self.items):
            raise ValueError("at least one spin wheel item needs a positive weight")
        return self


__all__ = [
    "ChoiceOption",
    "ConditionalUpgrade",
    "EventRewardConfig",
    "RaffleEntryGrant",
    "RaffleSettings",
    "RewardGrant",
    "RewardSet",
    "SpinSettings",
    "SpinWheelDefinition",
    "SpinWheelItem",
    "StreakMilestone",
    "StreakSettings",
    "UpgradeCondition",
    "UpgradeReplacement",
    "UpgradeTarget",
    "VoucherGrant",
]
