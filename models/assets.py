"""
Asset schemas — backgrounds, character sprites and CG illustrations.

Asset ids are minted when the action that creates them is built
(``asset-<ms>`` or ``asset-<ms>-<index>`` for batches) and are never reused.
"""

import time
from typing import Literal, Optional

from pydantic import BaseModel

from models.wire import WIRE_CONFIG


AssetType = Literal["background", "characterSprite", "cg"]


def now_ms() -> int:
    return int(time.time() * 1000)


def new_asset_id(index: Optional[int] = None, stamp: Optional[int] = None) -> str:
    """Mint an asset id from the current wall clock."""
    stamp = stamp if stamp is not None else now_ms()
    if index is None:
        return f"asset-{stamp}"
    return f"asset-{stamp}-{index}"


class Asset(BaseModel):
    """An image the scene can show. ``url`` may be a data URL."""

    id: str
    type: AssetType
    url: str
    name: str
    is_published: bool = False
    owner_id: Optional[str] = None

    model_config = WIRE_CONFIG


class PendingAssetApproval(BaseModel):
    """A player-submitted sprite waiting for the host to approve it."""

    asset_id: str
    character_id_to_assign: str
    submitting_player_id: str

    model_config = WIRE_CONFIG
