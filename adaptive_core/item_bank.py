from __future__ import annotations
import json, importlib.resources as ir
from typing import Dict, Iterable, List, Optional
from .types import Item


def load_bank() -> List[Item]:
    data = ir.files(__package__).joinpath("data/bank.json").read_text(encoding="utf-8")
    raw = json.loads(data)
    return [Item.from_dict(r) for r in raw]


class InMemoryItemBank:
    """Item bank collaborator backed by a dict; insertion order is kept."""

    def __init__(self, items: Optional[Iterable[Item]] = None):
        self._items: Dict[str, Item] = {}
        for it in items or ():
            self.add(it)

    @classmethod
    def packaged(cls) -> "InMemoryItemBank":
        return cls(load_bank())

    def add(self, item: Item) -> None:
        self._items[item.id] = item

    def remove(self, item_id: str) -> bool:
        return self._items.pop(item_id, None) is not None

    def __len__(self) -> int:
        return len(self._items)

    def all_items(self) -> List[Item]:
        return list(self._items.values())

    def get_item(self, item_id: str) -> Optional[Item]:
        return self._items.get(item_id)

    def search_items(
        self,
        tier: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        type: Optional[str] = None,
        exclude_ids: Optional[Iterable[str]] = None,
    ) -> List[Item]:
        excluded = set(exclude_ids or ())
        wanted = [t.lower() for t in (tags or ()) if t]
        out: List[Item] = []
        for it in self._items.values():
            if it.id in excluded:
                continue
            if tier is not None and it.difficulty_tier != tier:
                continue
            if type is not None and it.type != type:
                continue
            if wanted:
                have = [t.lower() for t in it.tags if t]
                if not any(w in h or h in w for w in wanted for h in have):
                    continue
            out.append(it)
        return out
