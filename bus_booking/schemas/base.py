from typing import Any, List

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Wire models use camelCase keys; field names are accepted as well."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def coerce_seat_numbers(value: Any) -> Any:
    # 12 and "12" name the same seat
    if value is None or not isinstance(value, (list, tuple)):
        return value
    seats: List[str] = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, (str, int)):
            raise ValueError("seat numbers must be strings or integers")
        seat = str(item).strip()
        if not seat:
            raise ValueError("seat numbers must not be blank")
        seats.append(seat)
    return seats
