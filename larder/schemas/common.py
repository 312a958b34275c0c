from pydantic import BaseModel

class ErrorOut(BaseModel):
    """Body of every business-rule failure."""
    detail: str
    code: str
