"""
Payment method models.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PaymentMethodType(str, Enum):
    """Payment method kind."""

    CARD = "Card"
    BANK_ACCOUNT = "BankAccount"


class CardBrand(str, Enum):
    """Card brands accepted by the portal."""

    VISA = "Visa"
    MASTERCARD = "Mastercard"
    AMEX = "Amex"


class PaymentMethodCreateRequest(BaseModel):
    """Details of a payment method being attached to a customer."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    type: PaymentMethodType = Field(description="Card or bank account")
    last4: str = Field(pattern=r"^\d{4}$", description="Last four digits")
    brand: CardBrand | None = Field(None, description="Card brand (cards only)")
    expiry_month: int | None = Field(None, ge=1, le=12, description="Card expiry month")
    expiry_year: int | None = Field(None, ge=2000, description="Card expiry year")

    @model_validator(mode="after")
    def check_card_fields(self) -> "PaymentMethodCreateRequest":
        if self.type == PaymentMethodType.CARD:
            if self.brand is None or self.expiry_month is None or self.expiry_year is None:
                raise ValueError("Card payment methods require brand and expiry")
        elif self.brand is not None or self.expiry_month is not None or self.expiry_year is not None:
            raise ValueError("Bank accounts carry only last4")
        return self


class PaymentMethod(BaseModel):
    """Stored payment method."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(description="Payment method identifier")
    customer_id: str = Field(description="Owning customer")
    type: PaymentMethodType
    last4: str
    brand: CardBrand | None = None
    expiry_month: int | None = None
    expiry_year: int | None = None
    is_primary: bool = False

    @property
    def display_name(self) -> str:
        if self.type == PaymentMethodType.CARD and self.brand:
            return f"{self.brand.value} ending in {self.last4}"
        return f"Bank account ending in {self.last4}"
