"""
Bid Commands

Commands express intentions to change bid state. Field-level validation
happens here (pydantic); cross-entity checks happen in the manager and
the lifecycle controller.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, TypeVar

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from urgentfix.bids.models import Decision, Material, PriceBreakdown
from urgentfix.kernel.errors import ValidationError


class SubmitBid(BaseModel):
    """
    Submit a new bid on a service request

    Required fields mirror the bid submission form; everything else is
    optional detail shown to the customer.
    """

    service_request_id: str = Field(..., min_length=1, description="Target service request")
    contractor_id: str = Field(..., min_length=1, description="Submitting contractor")
    amount: Decimal = Field(..., gt=0, description="Bid amount in USD")
    description: str = Field(..., description="Detailed description of the proposed work")

    title: str | None = Field(default=None, description="Explicit title (auto-generated if omitted)")
    estimated_duration: str | None = Field(default=None, description="Estimated time to complete")
    warranty: str | None = Field(default=None, description="Warranty offered")
    materials: list[Material] = Field(default_factory=list, description="Materials needed")
    price_breakdown: PriceBreakdown | None = Field(default=None, description="Price breakdown")
    availability: str | None = Field(default=None, description="When the contractor can start")
    valid_until: datetime | None = Field(default=None, description="When this bid expires")
    notes: str | None = Field(default=None, description="Internal notes")

    model_config = {"extra": "forbid"}

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: str) -> str:
        """Validate description is non-empty"""
        if not v or not v.strip():
            raise ValueError("Bid description cannot be empty")
        return v.strip()

    @field_validator("amount")
    @classmethod
    def validate_amount_finite(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("Bid amount must be a finite number")
        return v


class DecideBid(BaseModel):
    """Customer accepts or rejects a pending bid"""

    bid_id: str = Field(..., min_length=1)
    decision: Decision = Field(..., description="accept or reject")
    deciding_party_id: str = Field(..., min_length=1, description="Customer or admin deciding")


class WithdrawBid(BaseModel):
    """Contractor withdraws their own pending bid"""

    bid_id: str = Field(..., min_length=1)
    contractor_id: str = Field(..., min_length=1)


C = TypeVar("C", bound=BaseModel)


def parse_command(command_cls: type[C], data: dict[str, Any]) -> C:
    """
    Build a command from raw input, reporting problems as ValidationError

    Raises:
        ValidationError: With one message per invalid field
    """
    try:
        return command_cls.model_validate(data)
    except PydanticValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in err['loc']) or 'input'}: {err['msg']}"
            for err in e.errors()
        ]
        raise ValidationError(f"Invalid {command_cls.__name__}: {'; '.join(errors)}", errors) from e
