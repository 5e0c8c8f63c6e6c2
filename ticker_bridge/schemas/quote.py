from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class Quote(BaseModel):
    symbol: str
    last_price: float
    change_absolute: float
    change_percent: float
    fetched_at: int
    status: Literal["OK"] = "OK"


class Unavailable(BaseModel):
    symbol: str
    reason: str
    status: Literal["UNAVAILABLE"] = "UNAVAILABLE"


QuoteResult = Annotated[Union[Quote, Unavailable], Field(discriminator="status")]

quote_results_adapter = TypeAdapter(list[QuoteResult])
