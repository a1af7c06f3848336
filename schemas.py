from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


# Requests
class PasswordRestrictions(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    min_length: int = Field(0, alias="minLength", ge=0)
    max_length: int = Field(0, alias="maxLength", ge=0, description="0 means no explicit cap")
    min_digits: int = Field(0, alias="minDigits", ge=0)
    min_special_chars: int = Field(0, alias="minSpecialChars", ge=0)
    min_letters: int = Field(0, alias="minLetters", ge=0)
    user_readable: bool = Field(False, alias="userReadable", description="Sample the base from the sequence model")
    # Both may be set; lower case is applied last and wins
    all_upper_case: bool = Field(False, alias="allUpperCase")
    all_lower_case: bool = Field(False, alias="allLowerCase")


# Responses
class PasswordResponse(BaseModel):
    error: str = ""
    password: str = ""


class ModelSummary(BaseModel):
    loaded: bool
    order: Optional[int] = None
    contexts: Optional[int] = None
    mean: Optional[float] = None
    std_dev: Optional[float] = None
    error: Optional[str] = None
