# households.py — HealthPulse Collect
# Household registry: one household draft + N member drafts, validated
# client-side and written as a sequence of dependent inserts.

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields as dc_fields
from datetime import date
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

import config
from models import (
    CHILD_BUCKETS,
    AncDetails,
    Household,
    HouseholdMember,
    as_bool,
    clean_diseases,
    clean_text,
    digits_only,
    opt_int,
    parse_date,
    pregnancy_month_from_lmp,
    toggle_disease,
    yes_no,
)
from store import RecordStore, StoreConflictError
from workflow import Saga, WorkflowError

logger = logging.getLogger(__name__)

MOBILE_LENGTH = 10
HEAD_RELATION = "Self"

ANC_FIELDS = {f.name for f in dc_fields(AncDetails)}
ANC_INT_FIELDS = {"pregnancy_month", "anc_visits", "children_no"}
HOUSEHOLD_TEXT_FIELDS = {"village_name", "house_number", "head_name"}


def calculate_age(dob: Any, today: Optional[date] = None) -> Optional[int]:
    """
    Whole years between dob and today; one less if this year's birthday
    has not happened yet.
    """
    born = parse_date(dob)
    if born is None:
        return None
    today = today or date.today()
    if born > today:
        return None
    age = today.year - born.year
    if (today.month, today.day) < (born.month, born.day):
        age -= 1
    return age


class RegistryValidationError(ValueError):
    def __init__(self, errors: List[str]):
        super().__init__(" ".join(errors))
        self.errors = errors


class RegistrationError(Exception):
    """A store call failed after validation passed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.committed: List[str] = []
        self.compensated: List[str] = []
        self.left_partial_data = False


class DuplicateMemberIdError(RegistrationError):
    def __init__(self, adhar_number: str, cause: Optional[BaseException] = None):
        super().__init__(
            f"A member with ID number {adhar_number} is already registered.",
            cause,
        )
        self.adhar_number = adhar_number


@dataclass
class RegistrationResult:
    household: Dict[str, Any]
    members: List[Dict[str, Any]] = field(default_factory=list)
    general_records: List[Dict[str, Any]] = field(default_factory=list)
    anc_records: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "household": self.household,
            "members": self.members,
            "general_records": self.general_records,
            "anc": self.anc_records,
        }


class HouseholdRegistryForm:
    def __init__(self, today: Optional[Callable[[], date]] = None):
        self._today = today or date.today
        self.household = Household()
        self.members: List[HouseholdMember] = []
        self.expanded: Set[int] = set()
        self.reset()

    # -------------------------
    # Draft editing
    # -------------------------

    @property
    def member_count(self) -> int:
        return len(self.members)

    def set_member_count(self, count: Any) -> List[HouseholdMember]:
        """
        Grows by appending blank members or shrinks by cutting from the end.
        Cut members are dropped without confirmation and returned.
        """
        n = max(1, opt_int(count) or 1)
        if n > config.MAX_MEMBERS:
            raise RegistryValidationError([f"A household can have at most {config.MAX_MEMBERS} members."])
        discarded: List[HouseholdMember] = []
        if n > len(self.members):
            self.members.extend(HouseholdMember() for _ in range(n - len(self.members)))
        elif n < len(self.members):
            discarded = self.members[n:]
            self.members = self.members[:n]
            self.expanded = {i for i in self.expanded if i < n}
            logger.info("Member count reduced to %d, discarded %d draft(s)", n, len(discarded))
        return discarded

    def toggle_panel(self, index: int) -> bool:
        self._member(index)
        if index in self.expanded:
            self.expanded.discard(index)
            return False
        self.expanded.add(index)
        return True

    def update_household(self, name: str, value: Any) -> None:
        if name == "member_count":
            self.set_member_count(value)
            return
        if name == "mobile_no":
            # digits only, stripped as typed
            self.household.mobile_no = digits_only(value)
        elif name in CHILD_BUCKETS:
            setattr(self.household, name, max(0, opt_int(value) or 0))
        elif name in HOUSEHOLD_TEXT_FIELDS:
            text = "" if value is None else str(value)
            setattr(self.household, name, text)
            if name == "head_name":
                self.members[0].full_name = text
        else:
            raise KeyError(name)

    def update_member(self, index: int, name: str, value: Any) -> None:
        member = self._member(index)
        if name.startswith("anc_") and name[4:] in ANC_FIELDS:
            name = name[4:]
        if name in ANC_FIELDS:
            self._update_anc(member, name, value)
            return
        if name == "dob":
            member.dob = clean_text(value)
            member.age = calculate_age(member.dob, self._today())
        elif name == "age":
            member.age = opt_int(value)
        elif name == "diseases":
            member.diseases = clean_diseases(value)
        elif name == "is_pregnant":
            member.is_pregnant = as_bool(value)
        elif name in ("full_name", "gender", "adhar_number", "relation_to_head", "education", "caste"):
            text = "" if value is None else str(value)
            setattr(member, name, text)
            if index == 0 and name == "full_name":
                self.household.head_name = text
        else:
            raise KeyError(name)

    def toggle_member_disease(self, index: int, disease: str) -> List[str]:
        member = self._member(index)
        member.diseases = toggle_disease(member.diseases, disease)
        return member.diseases

    def _update_anc(self, member: HouseholdMember, name: str, value: Any) -> None:
        if name in ANC_INT_FIELDS:
            setattr(member.anc, name, opt_int(value))
        elif name == "lmp_date":
            member.anc.lmp_date = clean_text(value)
            member.anc.pregnancy_month = pregnancy_month_from_lmp(member.anc.lmp_date, self._today())
        else:
            setattr(member.anc, name, yes_no(value))

    def _member(self, index: int) -> HouseholdMember:
        if index < 0 or index >= len(self.members):
            raise IndexError(f"No member at position {index}")
        return self.members[index]

    @classmethod
    def from_payload(cls, data: Mapping[str, Any], today: Optional[Callable[[], date]] = None) -> "HouseholdRegistryForm":
        form = cls(today=today)
        data = data or {}
        members = data.get("members") or []
        if not isinstance(members, list):
            raise RegistryValidationError(["Members must be a list."])
        if len(members) > config.MAX_MEMBERS:
            raise RegistryValidationError([f"A household can have at most {config.MAX_MEMBERS} members."])
        form.set_member_count(max(len(members), opt_int(data.get("member_count")) or 1))
        for key in ("village_name", "house_number", "head_name", "mobile_no") + CHILD_BUCKETS:
            if key in data:
                form.update_household(key, data.get(key))
        for index, raw in enumerate(members):
            if not isinstance(raw, Mapping):
                raise RegistryValidationError([f"Member {index + 1} must be an object."])
            # dob and lmp_date first so explicit overrides of derived values win
            for key, value in sorted(raw.items(), key=lambda kv: kv[0] not in ("dob", "lmp_date")):
                if key == "anc_details" and isinstance(value, Mapping):
                    for anc_key, anc_value in sorted(value.items(), key=lambda kv: kv[0] != "lmp_date"):
                        if anc_key in ANC_FIELDS:
                            form.update_member(index, anc_key, anc_value)
                elif key == "age" and raw.get("dob"):
                    # derived from dob
                    continue
                elif key == "full_name" and index == 0 and not clean_text(value):
                    continue
                else:
                    try:
                        form.update_member(index, key, value)
                    except KeyError:
                        continue
        return form

    # -------------------------
    # Validation
    # -------------------------

    def duplicate_ids(self) -> List[str]:
        seen: Set[str] = set()
        dupes: List[str] = []
        for member in self.members:
            number = clean_text(member.adhar_number)
            if not number:
                continue
            if number in seen and number not in dupes:
                dupes.append(number)
            seen.add(number)
        return dupes

    def validate(self) -> None:
        errors: List[str] = []
        if not clean_text(self.household.village_name):
            errors.append("Village name is required.")
        if not clean_text(self.household.house_number):
            errors.append("House number is required.")
        for i, member in enumerate(self.members):
            if not clean_text(member.full_name):
                errors.append(f"Member {i + 1} name is required.")
            month = member.anc.pregnancy_month
            if member.needs_anc and month is not None and not 1 <= month <= 9:
                errors.append(f"Member {i + 1} pregnancy month must be between 1 and 9.")
        dupes = self.duplicate_ids()
        if dupes:
            errors.append("Duplicate ID numbers in this form: " + ", ".join(dupes) + ".")
        if len(self.household.mobile_no) != MOBILE_LENGTH:
            errors.append(f"Mobile number must be exactly {MOBILE_LENGTH} digits.")
        if errors:
            raise RegistryValidationError(errors)

    # -------------------------
    # Submission
    # -------------------------

    def _clean_household(self) -> Household:
        h = self.household
        return Household(
            village_name=clean_text(h.village_name),
            house_number=clean_text(h.house_number),
            head_name=clean_text(h.head_name),
            mobile_no=h.mobile_no,
            **{b: int(getattr(h, b) or 0) for b in CHILD_BUCKETS},
        )

    def _clean_members(self) -> List[HouseholdMember]:
        out = []
        for m in self.members:
            out.append(
                HouseholdMember(
                    full_name=clean_text(m.full_name),
                    dob=clean_text(m.dob),
                    age=m.age,
                    gender=clean_text(m.gender),
                    adhar_number=clean_text(m.adhar_number),
                    relation_to_head=clean_text(m.relation_to_head),
                    education=clean_text(m.education),
                    caste=clean_text(m.caste),
                    diseases=list(m.diseases),
                    is_pregnant=bool(m.is_pregnant),
                    anc=m.anc,
                )
            )
        return out

    def submit(self, store: RecordStore, compensate: Optional[bool] = None) -> RegistrationResult:
        # nothing reaches the store unless validation passes
        self.validate()
        if compensate is None:
            compensate = config.COMPENSATE_ON_FAILURE
        household = self._clean_household()
        members = self._clean_members()
        saga = build_registration_saga(store, household, members, compensate=compensate)
        try:
            ctx = saga.run()
        except WorkflowError as exc:
            raise _registration_error(exc) from exc
        result = RegistrationResult(
            household=ctx["household"],
            members=ctx["members"],
            general_records=ctx["general_records"],
            anc_records=ctx["anc_records"],
        )
        logger.info(
            "Registered household id=%s with %d member(s), %d ANC record(s)",
            result.household.get("id"),
            len(result.members),
            len(result.anc_records),
        )
        self.reset()
        return result

    def reset(self) -> None:
        self.household = Household()
        self.members = [HouseholdMember(relation_to_head=HEAD_RELATION)]
        self.expanded = {0}


def _registration_error(exc: WorkflowError) -> RegistrationError:
    cause = exc.cause
    if isinstance(cause, RegistrationError):
        err = cause
    else:
        err = RegistrationError(f"Failed to register household: {cause}", cause)
    err.committed = list(exc.committed)
    err.compensated = list(exc.compensated)
    err.left_partial_data = exc.left_partial_data
    if err.left_partial_data:
        logger.warning(
            "Household registration left partial data: committed=%s compensated=%s",
            exc.committed,
            exc.compensated,
        )
    return err


# -------------------------
# Step factories
# -------------------------

def _delete(store: RecordStore, table: str) -> Callable[[Dict[str, Any], Any], None]:
    def undo(ctx: Dict[str, Any], row: Any) -> None:
        if row and row.get("id") is not None:
            store.delete(table, row["id"])

    return undo


def _insert_household(store: RecordStore, household: Household):
    def run(ctx: Dict[str, Any]) -> Dict[str, Any]:
        row = store.insert("households", household.to_row())
        ctx["household"] = row
        ctx["members"] = []
        ctx["general_records"] = []
        ctx["anc_records"] = []
        ctx["member_ids"] = {}
        return row

    return run


def _insert_member(store: RecordStore, index: int, member: HouseholdMember):
    def run(ctx: Dict[str, Any]) -> Dict[str, Any]:
        household_id = ctx["household"]["id"]
        try:
            row = store.insert("household_members", member.to_row(household_id))
        except StoreConflictError as exc:
            raise DuplicateMemberIdError(member.adhar_number, exc) from exc
        ctx["members"].append(row)
        ctx["member_ids"][index] = row["id"]
        return row

    return run


def _insert_general_mirror(store: RecordStore, index: int, member: HouseholdMember, mobile_no: str):
    # general-health mirror of a member, so flat general listings include registered residents
    def run(ctx: Dict[str, Any]) -> Dict[str, Any]:
        household_id = ctx["household"]["id"]
        member_id = ctx["member_ids"][index]
        row = store.insert("general_surveys", member.general_health_row(household_id, member_id, mobile_no))
        ctx["general_records"].append(row)
        return row

    return run


def _insert_anc(store: RecordStore, index: int, member: HouseholdMember):
    def run(ctx: Dict[str, Any]) -> Dict[str, Any]:
        household_id = ctx["household"]["id"]
        member_id = ctx["member_ids"][index]
        row = store.insert("anc_surveys", member.anc_row(household_id, member_id))
        ctx["anc_records"].append(row)
        return row

    return run


def build_registration_saga(
    store: RecordStore,
    household: Household,
    members: List[HouseholdMember],
    compensate: bool = True,
) -> Saga:
    saga = Saga(name="household-registration", compensate=compensate)
    saga.add("household", _insert_household(store, household), _delete(store, "households"))
    for i, member in enumerate(members):
        saga.add(f"member[{i}]", _insert_member(store, i, member), _delete(store, "household_members"))
    for i, member in enumerate(members):
        saga.add(
            f"general[{i}]",
            _insert_general_mirror(store, i, member, household.mobile_no),
            _delete(store, "general_surveys"),
        )
    for i, member in enumerate(members):
        if member.needs_anc:
            saga.add(f"anc[{i}]", _insert_anc(store, i, member), _delete(store, "anc_surveys"))
    return saga


# -------------------------
# Reads
# -------------------------

def list_households(store: RecordStore, with_members: bool = True) -> List[Dict[str, Any]]:
    households = store.select_recent("households")
    if not with_members or not households:
        return households
    ids = [h["id"] for h in households]
    members = store.select("household_members", filters={"household_id": ids}, order_by="id")
    by_household: Dict[Any, List[Dict[str, Any]]] = {}
    for m in members:
        by_household.setdefault(m.get("household_id"), []).append(m)
    for h in households:
        h["members"] = by_household.get(h["id"], [])
    return households


def get_member(store: RecordStore, member_id: Any) -> Optional[Dict[str, Any]]:
    return store.select_one("household_members", {"id": member_id})


def get_member_anc(store: RecordStore, member_id: Any) -> Optional[Dict[str, Any]]:
    return store.select_one("anc_surveys", {"member_id": member_id})
