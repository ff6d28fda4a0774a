"""Canonical region catalog and provider-id/name resolution.

Canonical region ids are the project's stable string keys (e.g. "kyiv-city").
The upstream provider identifies oblast-level locations by numeric string UIDs
and reports the parent oblast of smaller locations by UID and/or title.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple


@dataclass(frozen=True)
class Region:
    """One canonical region and its provider-side identifiers."""

    id: str
    uid: str
    name_ua: str
    name_en: str
    provider_title: str


_REGIONS: Tuple[Region, ...] = (
    Region("khmelnytskyi", "3", "Хмельницька", "Khmelnytskyi", "Хмельницька область"),
    Region("vinnytsia", "4", "Вінницька", "Vinnytsia", "Вінницька область"),
    Region("rivne", "5", "Рівненська", "Rivne", "Рівненська область"),
    Region("volyn", "8", "Волинська", "Volyn", "Волинська область"),
    Region("dnipro", "9", "Дніпропетровська", "Dnipropetrovsk", "Дніпропетровська область"),
    Region("zhytomyr", "10", "Житомирська", "Zhytomyr", "Житомирська область"),
    Region("zakarpattia", "11", "Закарпатська", "Zakarpattia", "Закарпатська область"),
    Region("zaporizhzhia", "12", "Запорізька", "Zaporizhzhia", "Запорізька область"),
    Region("ivano-frankivsk", "13", "Івано-Франківська", "Ivano-Frankivsk", "Івано-Франківська область"),
    Region("kyiv-oblast", "14", "Київська", "Kyiv Oblast", "Київська область"),
    Region("kirovohrad", "15", "Кіровоградська", "Kirovohrad", "Кіровоградська область"),
    Region("luhansk", "16", "Луганська", "Luhansk", "Луганська область"),
    Region("mykolaiv", "17", "Миколаївська", "Mykolaiv", "Миколаївська область"),
    Region("odesa", "18", "Одеська", "Odesa", "Одеська область"),
    Region("poltava", "19", "Полтавська", "Poltava", "Полтавська область"),
    Region("sumy", "20", "Сумська", "Sumy", "Сумська область"),
    Region("ternopil", "21", "Тернопільська", "Ternopil", "Тернопільська область"),
    Region("kharkiv", "22", "Харківська", "Kharkiv", "Харківська область"),
    Region("kherson", "23", "Херсонська", "Kherson", "Херсонська область"),
    Region("cherkasy", "24", "Черкаська", "Cherkasy", "Черкаська область"),
    Region("chernihiv", "25", "Чернігівська", "Chernihiv", "Чернігівська область"),
    Region("chernivtsi", "26", "Чернівецька", "Chernivtsi", "Чернівецька область"),
    Region("lviv", "27", "Львівська", "Lviv", "Львівська область"),
    Region("donetsk", "28", "Донецька", "Donetsk", "Донецька область"),
    Region("crimea", "29", "АР Крим", "Crimea", "Автономна Республіка Крим"),
    Region("sevastopol", "30", "м. Севастополь", "Sevastopol", "м. Севастополь"),
    Region("kyiv-city", "31", "м. Київ", "Kyiv City", "м. Київ"),
)


def _normalize_title(name: str) -> str:
    val = " ".join(name.strip().lower().split())
    if val.endswith(" область"):
        val = val[: -len(" область")]
    return val


class RegionCatalog:
    """Lookup tables over a fixed set of regions (order is the catalog's display order)."""

    def __init__(self, regions: Iterable[Region] = _REGIONS):
        self._regions: List[Region] = list(regions)
        self._by_id: Dict[str, Region] = {r.id: r for r in self._regions}
        self._by_uid: Dict[str, Region] = {r.uid: r for r in self._regions}
        self._by_title: Dict[str, Region] = {}
        for r in self._regions:
            self._by_title[_normalize_title(r.provider_title)] = r
            self._by_title[_normalize_title(r.name_ua)] = r

    def __len__(self) -> int:
        return len(self._regions)

    def __iter__(self):
        return iter(self._regions)

    def uids(self) -> List[str]:
        """Provider UIDs of every region, in catalog order (the history fetch keys)."""
        return [r.uid for r in self._regions]

    def ids(self) -> List[str]:
        return [r.id for r in self._regions]

    def get(self, region_id: str) -> Optional[Region]:
        return self._by_id.get(region_id)

    def by_uid(self, uid: str) -> Optional[Region]:
        return self._by_uid.get(str(uid))

    def by_oblast_name(self, name: Optional[str]) -> Optional[Region]:
        if not name:
            return None
        return self._by_title.get(_normalize_title(name))

    def display_name(self, region_id: str) -> str:
        region = self._by_id.get(region_id)
        return region.name_ua if region else region_id

    def order_of(self, region_id: str) -> int:
        """Catalog position of a region; unknown ids sort last."""
        for idx, r in enumerate(self._regions):
            if r.id == region_id:
                return idx
        return len(self._regions)


DEFAULT_CATALOG = RegionCatalog()
