# navigation.py — HealthPulse Collect
# Dashboard drill-down: Villages -> Households(village) -> Residents(household)

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from models import clean_text, opt_int


@dataclass(frozen=True)
class Villages:
    level = "villages"

    @property
    def label(self) -> str:
        return "Villages"


@dataclass(frozen=True)
class Households:
    village: str
    level = "households"

    @property
    def label(self) -> str:
        return self.village


@dataclass(frozen=True)
class Residents:
    household_id: int
    household_label: str = ""
    level = "residents"

    @property
    def label(self) -> str:
        return self.household_label or f"Household {self.household_id}"


Level = Union[Villages, Households, Residents]


class NavigationError(ValueError):
    pass


@dataclass(frozen=True)
class Navigation:
    """
    Immutable breadcrumb trail. Transitions return a new Navigation; the
    only legal shapes are [Villages], [Villages, Households] and
    [Villages, Households, Residents].
    """

    trail: Tuple[Level, ...] = (Villages(),)

    @property
    def current(self) -> Level:
        return self.trail[-1]

    @property
    def depth(self) -> int:
        return len(self.trail)

    def drill_into_village(self, village: str) -> "Navigation":
        if not isinstance(self.current, Villages):
            raise NavigationError("Villages can only be opened from the village list.")
        village = clean_text(village)
        if not village:
            raise NavigationError("Village name is required.")
        return Navigation(self.trail + (Households(village),))

    def drill_into_household(self, household_id: int, label: str = "") -> "Navigation":
        if not isinstance(self.current, Households):
            raise NavigationError("Households can only be opened from a village.")
        return Navigation(self.trail + (Residents(int(household_id), clean_text(label)),))

    def back(self) -> "Navigation":
        if self.depth == 1:
            return self
        return Navigation(self.trail[:-1])

    def jump_to(self, index: int) -> "Navigation":
        # breadcrumb click: keep everything up to and including index
        if index < 0 or index >= self.depth:
            raise NavigationError(f"No breadcrumb at position {index}.")
        return Navigation(self.trail[: index + 1])

    def breadcrumbs(self) -> List[Dict[str, Any]]:
        return [
            {"index": i, "level": lvl.level, "label": lvl.label, "current": i == self.depth - 1}
            for i, lvl in enumerate(self.trail)
        ]

    @property
    def village(self) -> Optional[str]:
        for lvl in self.trail:
            if isinstance(lvl, Households):
                return lvl.village
        return None

    def to_args(self) -> Dict[str, str]:
        args: Dict[str, str] = {}
        for lvl in self.trail:
            if isinstance(lvl, Households):
                args["village"] = lvl.village
            elif isinstance(lvl, Residents):
                args["household_id"] = str(lvl.household_id)
                if lvl.household_label:
                    args["household_label"] = lvl.household_label
        return args

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "Navigation":
        nav = cls()
        village = clean_text(args.get("village"))
        if not village:
            return nav
        nav = nav.drill_into_village(village)
        household_id = opt_int(args.get("household_id"))
        if household_id is None:
            return nav
        return nav.drill_into_household(household_id, clean_text(args.get("household_label")))
