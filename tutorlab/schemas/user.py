from pydantic import BaseModel


class TokenPayload(BaseModel):
    sub: str
    email: str | None = None
    exp: int
