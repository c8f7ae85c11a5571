from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Literal, Optional


class SignupRequest(BaseModel):
    id: str = Field(..., min_length=1, description="Identity id issued by the auth service")
    email: EmailStr
    full_name: Optional[str] = Field(None, alias="fullName")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "id": "7b0c2a4e-3f55-4a44-9b1e-0c6f1f5c2d11",
                "email": "name@mail.com",
                "fullName": "Tony Stark",
            }
        }


class UserOut(BaseModel):
    id: str
    email: str
    full_name: Optional[str] = Field(None, alias="fullName")
    plan_type: str = Field(..., alias="planType")
    email_verified: bool = Field(..., alias="emailVerified")
    created_at: Optional[datetime] = Field(None, alias="createdAt")

    class Config:
        from_attributes = True
        populate_by_name = True


class ScanUrlRequest(BaseModel):
    image_url: str = Field(..., min_length=1, alias="imageUrl")

    class Config:
        populate_by_name = True


class ScanResponse(BaseModel):
    allowed: bool
    ai_score: float = Field(..., alias="aiScore")
    is_ai: bool = Field(..., alias="isAI")
    scans_remaining: int = Field(..., alias="scansRemaining")
    plan_type: str = Field(..., alias="planType")

    class Config:
        populate_by_name = True


class UsageOut(BaseModel):
    plan_type: str = Field(..., alias="planType")
    monthly_limit: int = Field(..., alias="monthlyLimit")
    monthly_usage: int = Field(..., alias="monthlyUsage")
    credit_balance: int = Field(..., alias="creditBalance")
    days_until_reset: int = Field(..., alias="daysUntilReset")

    class Config:
        populate_by_name = True


class CheckoutRequest(BaseModel):
    plan: Literal["starter", "pro", "power", "credit"]


class CheckoutResponse(BaseModel):
    session_id: str = Field(..., alias="sessionId")
    url: Optional[str] = None

    class Config:
        populate_by_name = True


class PortalResponse(BaseModel):
    url: str
