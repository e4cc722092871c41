from datetime import datetime
from enum import Enum
from pydantic import BaseModel, field_validator
from typing import Optional, List


class LinkPrecedence(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class Contact(BaseModel):
    id: int
    email: Optional[str] = None
    phoneNumber: Optional[str] = None
    linkedId: Optional[int] = None
    linkPrecedence: LinkPrecedence
    createdAt: datetime
    updatedAt: Optional[datetime] = None
    deletedAt: Optional[datetime] = None

    @property
    def is_primary(self) -> bool:
        return self.linkPrecedence == LinkPrecedence.PRIMARY

    @property
    def sort_key(self):
        return (self.createdAt, self.id)


def _blank_to_none(value):
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return value


class IdentifyRequest(BaseModel):
    email: Optional[str] = None
    phoneNumber: Optional[str] = None

    # Clients commonly send phone numbers as JSON numbers
    @field_validator("email", "phoneNumber", mode="before")
    @classmethod
    def normalize(cls, value):
        return _blank_to_none(value)


class ContactResponse(BaseModel):
    primaryContactId: int
    emails: List[str]
    phoneNumbers: List[str]
    secondaryContactIds: List[int]

class FinalResponse(BaseModel):
    contact: ContactResponse

class AddContactRequest(BaseModel):
    id: Optional[int] = None
    email: Optional[str] = None
    phoneNumber: Optional[str] = None
    linkedId: Optional[int] = None
    linkPrecedence: LinkPrecedence = LinkPrecedence.PRIMARY
    createdAt: Optional[datetime] = None

    @field_validator("email", "phoneNumber", mode="before")
    @classmethod
    def normalize(cls, value):
        return _blank_to_none(value)

class AddContactResponse(BaseModel):
    message: str
    contact_id: int

class ErrorResponse(BaseModel):
    message: str
    retryable: bool = False
