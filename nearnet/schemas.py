from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class TopologySecrets(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_creator_key: str = Field(
        ...,
        min_length=1,
        description="Key the contract helper uses to create accounts (usually the nearup validator key)",
    )
