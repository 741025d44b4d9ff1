from pydantic import BaseModel, EmailStr, field_validator
from typing import Optional
from datetime import datetime

class UserPublic(BaseModel):
    """Baseline profile data visible to any signed-in user."""
    id: str
    first_name: str = ""
    last_name: str = ""
    display_name: Optional[str] = None
    profile_picture: Optional[str] = None
    is_verified: bool = False

    class Config:
        from_attributes = True

class UserProfile(UserPublic):
    """Full profile, shown only when the viewer may see it."""
    bio: Optional[str] = None
    created_at: Optional[datetime] = None

class UserResponse(UserProfile):
    """The caller's own account."""
    email: Optional[str] = None
    phone_number: Optional[str] = None
    is_active: bool = True
    updated_at: Optional[datetime] = None

class UserUpdate(BaseModel):
    """Schema for updating the caller's profile"""
    email: Optional[EmailStr] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    display_name: Optional[str] = None
    bio: Optional[str] = None
    profile_picture: Optional[str] = None

    @field_validator('first_name', 'last_name')
    @classmethod
    def validate_name(cls, v):
        if v is not None:
            v = v.strip()
            if len(v) < 2 or len(v) > 50:
                raise ValueError('Name must be between 2 and 50 characters long')
        return v

    @field_validator('bio')
    @classmethod
    def validate_bio(cls, v):
        if v is not None and len(v) > 500:
            raise ValueError('Bio must be at most 500 characters long')
        return v

class CurrentUser(BaseModel):
    """Identity of the authenticated caller, as stored in the user cache."""
    id: str
    email: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    display_name: Optional[str] = None
    is_verified: bool = False
    is_active: bool = True

    class Config:
        from_attributes = True

    @property
    def name(self) -> str:
        return self.display_name or " ".join(p for p in (self.first_name, self.last_name) if p) or self.id
