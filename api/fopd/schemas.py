from pydantic import BaseModel, Field, model_validator
from typing import List, Optional

from .doctypes import DocumentType


class CreateSessionRequest(BaseModel):
    property_id: int
    template_id: int


class VerifySessionRequest(BaseModel):
    session_token: str = Field(min_length=1)
    otp: str = Field(min_length=6, max_length=6, pattern=r"^\d{6}$")


class SubmitSignatureRequest(BaseModel):
    session_token: str = Field(min_length=1)
    signature_data_url: str = Field(min_length=1)
    consent_given: bool


class TemplateCreate(BaseModel):
    name: str = Field(min_length=1)
    template_type: DocumentType
    content: str = Field(min_length=1)
    content_arabic: str = Field(min_length=1)
    is_active: bool = True


class TemplateUpdate(BaseModel):
    name: Optional[str] = None
    content: Optional[str] = None
    content_arabic: Optional[str] = None
    is_active: Optional[bool] = None


class GenerateDocumentRequest(BaseModel):
    property_id: int
    document_type: DocumentType
    investor_id: Optional[int] = None  # admins only; investors get their own copy
    language: str = Field(default="en", pattern=r"^(en|ar)$")


class SlotCreate(BaseModel):
    slot_number: int = Field(ge=1, le=4)
    share_percentage: float = Field(ge=0, le=100)
    invitation_email: Optional[str] = None
    investor_id: Optional[int] = None


class ReservationCreate(BaseModel):
    property_id: int
    total_slots_reserved: int = Field(ge=1, le=4)
    slots: List[SlotCreate] = Field(min_length=1, max_length=4)

    @model_validator(mode="after")
    def check_slots(self):
        if abs(sum(s.share_percentage for s in self.slots) - 100) >= 0.01:
            raise ValueError("Share percentages must add up to 100%")
        if len(self.slots) != self.total_slots_reserved:
            raise ValueError("Number of slots must match total_slots_reserved")
        numbers = [s.slot_number for s in self.slots]
        if len(set(numbers)) != len(numbers):
            raise ValueError("Slot numbers must be unique")
        return self


class ReservationStatusUpdate(BaseModel):
    status: str


class InvitationCreate(BaseModel):
    slot_id: int
    invited_email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class SendInvitations(BaseModel):
    invitations: List[InvitationCreate] = Field(min_length=1)


class AcceptInvitation(BaseModel):
    invitation_token: str = Field(min_length=32)
    investor_id: Optional[int] = None


class DeclineInvitation(BaseModel):
    invitation_token: str = Field(min_length=32)
