from pydantic import BaseModel, ConfigDict, Field


class CreateDeviceDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1, max_length=255)
    description: str = Field("", max_length=2000)
    username: str = Field(min_length=1)


class UpdateDeviceDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1, max_length=255)
    description: str = Field("", max_length=2000)
