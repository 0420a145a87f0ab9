# dashboard.py — HealthPulse Collect
# Read-only admin views: flat tables, tabbed overview, village drill-down

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from auth import AdminSession
from households import get_member, get_member_anc, list_households
from models import YES, as_bool
from navigation import Households, Navigation, Residents, Villages
from store import RecordStore
from surveys import list_anc_surveys, list_general_surveys

TABS = ("general", "anc", "households")
UNKNOWN_VILLAGE = "Unknown"


def matches_search(record: Dict[str, Any], term: str) -> bool:
    """
    Case-insensitive substring on the name, plain substring on the ID number.
    """
    term = term or ""
    if not term.strip():
        return True
    needle = term.strip()
    name = record.get("full_name") or record.get("head_name") or ""
    if needle.lower() in str(name).lower():
        return True
    number = record.get("adhar_number")
    return bool(number) and needle in str(number)


def filter_records(records: Iterable[Dict[str, Any]], term: str) -> List[Dict[str, Any]]:
    return [r for r in records if matches_search(r, term)]


def is_critical(anc: Dict[str, Any]) -> bool:
    return anc.get("sam_status") == YES or anc.get("thalassemia_status") == YES


def survey_stats(general: List[Dict[str, Any]], anc: List[Dict[str, Any]]) -> Dict[str, int]:
    return {
        "total_records": len(general) + len(anc),
        "general_surveys": len(general),
        "anc_surveys": len(anc),
        "critical_anc_cases": sum(1 for a in anc if is_critical(a)),
    }


def registry_stats(households: List[Dict[str, Any]]) -> Dict[str, int]:
    residents = [m for h in households for m in h.get("members") or []]
    return {
        "households": len(households),
        "residents": len(residents),
        "pregnant_residents": sum(1 for m in residents if as_bool(m.get("is_pregnant"))),
        "villages": len({_village(h) for h in households}),
    }


def _village(household: Dict[str, Any]) -> str:
    return (household.get("village_name") or "").strip() or UNKNOWN_VILLAGE


def _household_label(household: Dict[str, Any]) -> str:
    number = (household.get("house_number") or "").strip()
    head = (household.get("head_name") or "").strip()
    if number and head:
        return f"#{number} {head}"
    return head or (f"#{number}" if number else f"Household {household.get('id')}")


def village_summaries(households: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    out: Dict[str, Dict[str, Any]] = {}
    for h in households:
        name = _village(h)
        entry = out.setdefault(name, {"village_name": name, "households": 0, "residents": 0, "pregnant": 0})
        members = h.get("members") or []
        entry["households"] += 1
        entry["residents"] += len(members)
        entry["pregnant"] += sum(1 for m in members if as_bool(m.get("is_pregnant")))
    return sorted(out.values(), key=lambda v: v["village_name"].lower())


def household_summary(household: Dict[str, Any]) -> Dict[str, Any]:
    members = household.get("members") or []
    summary = {k: v for k, v in household.items() if k != "members"}
    summary["label"] = _household_label(household)
    summary["member_count"] = len(members)
    summary["pregnant_count"] = sum(1 for m in members if as_bool(m.get("is_pregnant")))
    return summary


class Dashboard:
    """
    Admin views over the record store. Needs an authenticated AdminSession;
    all statistics are recomputed from the full result set of each call.
    """

    def __init__(self, store: RecordStore, admin: AdminSession):
        self.store = store
        self.admin = admin.require()

    # flat tables (one per survey kind)
    def flat_overview(self, term: str = "") -> Dict[str, Any]:
        general = list_general_surveys(self.store)
        anc = list_anc_surveys(self.store)
        return {
            "stats": survey_stats(general, anc),
            "general": filter_records(general, term),
            "anc": filter_records(anc, term),
            "query": term or "",
        }

    def tabbed_overview(self, tab: str = "general", term: str = "") -> Dict[str, Any]:
        tab = (tab or "general").strip().lower()
        if tab not in TABS:
            raise ValueError(f"Unknown tab: {tab}")
        general = list_general_surveys(self.store)
        anc = list_anc_surveys(self.store)
        households = list_households(self.store)
        stats = survey_stats(general, anc)
        stats.update(registry_stats(households))
        if tab == "general":
            rows = filter_records(general, term)
        elif tab == "anc":
            rows = filter_records(anc, term)
        else:
            rows = [
                household_summary(h)
                for h in households
                if matches_search(h, term) or filter_records(h.get("members") or [], term)
            ]
        return {
            "stats": stats,
            "tabs": [
                {"key": "general", "label": "General Health", "count": len(general), "active": tab == "general"},
                {"key": "anc", "label": "Antenatal Care", "count": len(anc), "active": tab == "anc"},
                {"key": "households", "label": "Households", "count": len(households), "active": tab == "households"},
            ],
            "tab": tab,
            "rows": rows,
            "query": term or "",
        }

    def explore(self, nav: Optional[Navigation] = None, term: str = "") -> Dict[str, Any]:
        nav = nav or Navigation()
        households = list_households(self.store)
        level = nav.current
        view: Dict[str, Any] = {
            "level": level.level,
            "breadcrumbs": nav.breadcrumbs(),
            "args": nav.to_args(),
            "stats": registry_stats(households),
            "query": term or "",
        }
        if isinstance(level, Villages):
            items = village_summaries(households)
            if term and term.strip():
                needle = term.strip().lower()
                items = [v for v in items if needle in v["village_name"].lower()]
        elif isinstance(level, Households):
            in_village = [h for h in households if _village(h) == level.village]
            items = [
                household_summary(h)
                for h in in_village
                if matches_search(h, term) or filter_records(h.get("members") or [], term)
            ]
        elif isinstance(level, Residents):
            household = next(
                (h for h in households if h.get("id") == level.household_id and _village(h) == nav.village),
                None,
            )
            if household is None:
                raise LookupError(f"Household {level.household_id} not found.")
            view["household"] = household_summary(household)
            items = filter_records(household.get("members") or [], term)
        else:
            raise TypeError(f"Unsupported level {level!r}")
        view["items"] = items
        return view

    def resident_detail(self, member_id: Any) -> Dict[str, Any]:
        member = get_member(self.store, member_id)
        if member is None:
            raise LookupError(f"Resident {member_id} not found.")
        anc = None
        # ANC lookup only for residents flagged pregnant
        if as_bool(member.get("is_pregnant")):
            anc = get_member_anc(self.store, member["id"])
        return {"resident": member, "anc": anc, "critical": bool(anc) and is_critical(anc)}

    def households(self, term: str = "") -> List[Dict[str, Any]]:
        rows = list_households(self.store)
        if not term:
            return rows
        return [h for h in rows if matches_search(h, term) or filter_records(h.get("members") or [], term)]
