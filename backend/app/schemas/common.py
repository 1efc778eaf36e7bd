"""
Shared schema helpers.

Request bodies use camelCase on the wire (the portal front end sends
programName, selectedVoucherIds, ...) and accept snake_case too. Money is
carried as Decimal and rendered as a JSON number.
"""

from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel

Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Attendee(CamelModel):
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
