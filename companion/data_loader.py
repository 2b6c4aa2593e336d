"""
Quest Companion — companion/data_loader.py
Static data tables for cosmetic items, validated by Pydantic.
=============================================================
Version:     0.1
Stack:       Python 3.11+ | Pydantic v2 | tomllib
Status:      Core data validation and loading layer.
"""

from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import tomllib
from pydantic import BaseModel, ConfigDict

# ================================================================================
# SCHEMAS
# ================================================================================

class ItemSlot(str, Enum):
    HAT = "hat"
    FACE = "face"
    AURA = "aura"
    TRAIL = "trail"


class ItemDef(BaseModel):
    model_config = ConfigDict(frozen=True)
    id: str
    name: str
    slot: ItemSlot
    min_level: int = 1      # level required to appear in a choice pool
    starter: bool = False   # owned from the start, never offered


class ItemCollectionDef(BaseModel):
    model_config = ConfigDict(frozen=True)
    items: List[ItemDef]


ItemRegistry = Tuple[ItemDef, ...]

# ================================================================================
# LOADERS & CACHE
# ================================================================================

DATA_DIR = Path(__file__).parent.parent / "data"
ITEMS_PATH = DATA_DIR / "items.toml"

_ITEM_REGISTRY_CACHE: Optional[ItemRegistry] = None


def load_item_registry(path: Path) -> ItemRegistry:
    """Loads an item registry from a TOML file. Raises on missing or invalid data."""
    if not path.exists():
        raise FileNotFoundError(f"Item registry not found: {path}")

    with open(path, "rb") as f:
        data = tomllib.load(f)

    collection = ItemCollectionDef(**data)
    ids = [item.id for item in collection.items]
    if len(ids) != len(set(ids)):
        raise ValueError(f"Duplicate item ids in {path}")
    return tuple(collection.items)


def get_item_registry() -> ItemRegistry:
    """Loads the bundled item registry. Cached globally."""
    global _ITEM_REGISTRY_CACHE
    if _ITEM_REGISTRY_CACHE is not None:
        return _ITEM_REGISTRY_CACHE

    _ITEM_REGISTRY_CACHE = load_item_registry(ITEMS_PATH)
    return _ITEM_REGISTRY_CACHE


def index_registry(registry: ItemRegistry) -> Dict[str, ItemDef]:
    """id -> ItemDef lookup for a registry."""
    return {item.id: item for item in registry}
