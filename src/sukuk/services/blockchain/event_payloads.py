"""Typed decoding of ``blockchain.events.event_data`` payloads.

Payload keys are the contract's camelCase argument names. Each handled event
name maps to a pydantic model; addresses are validated and lower-cased,
amounts are canonical decimal strings, and unix-second timestamps become
naive UTC datetimes (the projections store naive UTC).
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Optional, TypeVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from sukuk.core.token_math import to_amount
from sukuk.services.indexer.registry import normalize_address


def _blank_to_none(value: Any) -> Any:
    return None if value == "" else value


def _to_str(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def _unix_to_datetime(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)
    if isinstance(value, str) and value.isdigit():
        return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)
    return value


Address = Annotated[str, BeforeValidator(normalize_address)]
Amount = Annotated[str, BeforeValidator(to_amount)]
OptionalAmount = Annotated[Optional[Amount], BeforeValidator(_blank_to_none)]
UnixTime = Annotated[datetime, BeforeValidator(_unix_to_datetime)]


class EventPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class SukukDeployedPayload(EventPayload):
    series_name: str = Field(alias="seriesName", min_length=1)
    token_address: Address = Field(alias="tokenAddress")


class InvestmentPayload(EventPayload):
    investor: Address
    sukuk_token: Address = Field(alias="sukukToken")
    idrx_amount: Amount = Field(alias="idrxAmount")
    token_amount: Amount = Field(alias="tokenAmount")
    token_price: Amount = Field(alias="tokenPrice")
    previous_outstanding_supply: OptionalAmount = Field(
        default=None, alias="previousOutstandingSupply"
    )
    new_outstanding_supply: OptionalAmount = Field(default=None, alias="newOutstandingSupply")

    @property
    def has_supply_change(self) -> bool:
        return self.previous_outstanding_supply is not None and self.new_outstanding_supply is not None


class YieldDistributedPayload(EventPayload):
    distribution_id: int = Field(alias="distributionId", gt=0)
    sukuk_token: Address = Field(alias="sukukToken")
    total_yield_amount: Amount = Field(alias="totalYieldAmount")
    period_start: UnixTime = Field(alias="periodStart")
    period_end: UnixTime = Field(alias="periodEnd")
    yield_per_token: OptionalAmount = Field(default=None, alias="yieldPerToken")


class YieldClaimedPayload(EventPayload):
    investor: Address
    yield_amount: Amount = Field(alias="yieldAmount")
    from_distribution: int = Field(default=0, alias="fromDistribution", ge=0)
    to_distribution: int = Field(default=0, alias="toDistribution", ge=0)


class RedemptionCompletedPayload(EventPayload):
    redemption_id: Annotated[str, BeforeValidator(_to_str)] = Field(
        alias="redemptionId", min_length=1
    )
    investor: Address
    tokens_burned: Amount = Field(alias="tokensBurned")
    idrx_paid: Amount = Field(alias="idrxPaid")
    previous_token_balance: OptionalAmount = Field(default=None, alias="previousTokenBalance")
    new_token_balance: OptionalAmount = Field(default=None, alias="newTokenBalance")
    previous_outstanding_supply: OptionalAmount = Field(
        default=None, alias="previousOutstandingSupply"
    )
    new_outstanding_supply: OptionalAmount = Field(default=None, alias="newOutstandingSupply")

    @property
    def has_supply_change(self) -> bool:
        return self.previous_outstanding_supply is not None and self.new_outstanding_supply is not None


PayloadT = TypeVar("PayloadT", bound=EventPayload)


def decode_payload(model: type[PayloadT], event_data: dict[str, Any] | None) -> PayloadT:
    """Validate raw event_data against a payload model.

    Raises:
        pydantic.ValidationError: If required fields are missing or malformed
    """
    return model.model_validate(event_data or {})
