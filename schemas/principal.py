from pydantic import BaseModel, ConfigDict
from typing import Optional


class Principal(BaseModel):
    """Authenticated caller, produced by the auth step and passed into every admission call."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: Optional[str] = None
