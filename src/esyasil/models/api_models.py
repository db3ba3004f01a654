from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .outcome import ImageOutcome


class ProcessImagesRequest(BaseModel):
    images: List[str] = Field(default_factory=list)


class ProcessImagesResponse(BaseModel):
    results: List[ImageOutcome]


class CheckoutSessionResponse(BaseModel):
    url: str


class WebhookAck(BaseModel):
    received: bool = True


class AdminStatsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_users: int = Field(alias="totalUsers")
    total_processed_batches: int = Field(alias="totalProcessedBatches")
    total_processed_images: int = Field(alias="totalProcessedImages")


class AccountResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = Field(default=None, alias="displayName")
    credits: int
    subscription_status: str = Field(alias="subscriptionStatus")
    billing_customer_id: Optional[str] = Field(default=None, alias="stripeCustomerId")
