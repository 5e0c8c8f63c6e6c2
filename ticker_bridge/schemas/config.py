from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class Configuration(BaseModel):
    active_symbol: str | None = None
    refresh_interval_ms: int | None = Field(default=None, gt=0)


class ConfigUpdate(BaseModel):
    """Fields accepted by SET_CONFIG; omitted fields keep their stored value."""

    model_config = ConfigDict(extra="forbid")

    active_symbol: str | None = Field(
        default=None,
        validation_alias=AliasChoices("active_symbol", "activeSymbol"),
    )
    refresh_interval_ms: int | None = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("refresh_interval_ms", "refreshIntervalMs"),
    )
