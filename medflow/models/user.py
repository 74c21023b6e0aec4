from typing import Literal

from pydantic import BaseModel


class User(BaseModel):
    id: str
    name: str
    email: str = ""
    role: Literal["Intern", "Doctor", "Nurse", "Admin"] = "Doctor"
