from datetime import date

from pydantic import BaseModel, ConfigDict


class CreateReservationDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    dateStart: date
    dateEnd: date
    deviceId: int
