from pydantic import BaseModel


class Message(BaseModel):
    """Plain status text, e.g. the service banner on GET /."""

    message: str


class Created(BaseModel):
    """Id the store assigned to a newly created entity."""

    id: str
