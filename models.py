# models.py — HealthPulse Collect
# Record shapes for surveys, households and members

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional

DISEASE_OPTIONS = [
    "Diabetes",
    "Hypertension",
    "Thyroid",
    "Asthma",
    "Heart Disease",
    "Arthritis",
    "Kidney Disease",
    "Cancer",
    "None",
]

GENDERS = ("Male", "Female", "Other")
YES = "Yes"
NO = "No"

# Household child-count buckets: three age bands x two sexes.
CHILD_BUCKETS = (
    "boys_0_5",
    "girls_0_5",
    "boys_6_14",
    "girls_6_14",
    "boys_15_18",
    "girls_15_18",
)

DAYS_PER_MONTH = 30.44


def clean_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def yes_no(value: Any) -> str:
    if isinstance(value, bool):
        return YES if value else NO
    return YES if clean_text(value).lower() in ("yes", "y", "true", "1") else NO


def as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return clean_text(value).lower() in ("yes", "y", "true", "1", "on")


def opt_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return int(value)
    try:
        return int(float(str(value).strip()))
    except ValueError:
        return None


def parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = clean_text(value)
    if not raw:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


def digits_only(value: Any) -> str:
    return "".join(ch for ch in clean_text(value) if ch.isdigit())


def toggle_disease(current: List[str], disease: str) -> List[str]:
    """
    "None" is exclusive: picking it clears the list, picking anything else drops it.
    """
    if disease == "None":
        return ["None"]
    if disease in current:
        updated = [d for d in current if d != disease]
    else:
        updated = list(current) + [disease]
    return [d for d in updated if d != "None"]


def clean_diseases(value: Any) -> List[str]:
    if value is None or value == "":
        return []
    if isinstance(value, str):
        items = [v.strip() for v in value.split(",")]
    else:
        items = [clean_text(v) for v in value]
    out: List[str] = []
    for item in items:
        if item and item not in out:
            out.append(item)
    if "None" in out and len(out) > 1:
        out = [d for d in out if d != "None"]
    return out


def pregnancy_month_from_lmp(lmp: Any, today: Optional[date] = None) -> Optional[int]:
    start = parse_date(lmp)
    if start is None:
        return None
    today = today or date.today()
    days = (today - start).days
    if days < 0:
        return None
    return max(1, min(9, int(days / DAYS_PER_MONTH) + 1))


@dataclass
class AncDetails:
    lmp_date: str = ""
    pregnancy_month: Optional[int] = None
    anc_visits: Optional[int] = None
    children_no: Optional[int] = None
    tetanus_injection: str = NO
    iron_supplements: str = NO
    sam_status: str = NO
    mam_status: str = NO
    thalassemia_status: str = NO

    @classmethod
    def from_payload(cls, data: Optional[Mapping[str, Any]]) -> "AncDetails":
        data = data or {}
        details = cls(
            lmp_date=clean_text(data.get("lmp_date")),
            pregnancy_month=opt_int(data.get("pregnancy_month")),
            anc_visits=opt_int(data.get("anc_visits")),
            children_no=opt_int(data.get("children_no")),
            tetanus_injection=yes_no(data.get("tetanus_injection")),
            iron_supplements=yes_no(data.get("iron_supplements")),
            sam_status=yes_no(data.get("sam_status")),
            mam_status=yes_no(data.get("mam_status")),
            thalassemia_status=yes_no(data.get("thalassemia_status")),
        )
        if details.pregnancy_month is None:
            details.pregnancy_month = pregnancy_month_from_lmp(details.lmp_date)
        return details

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        row["lmp_date"] = self.lmp_date or None
        return row

    @property
    def is_critical(self) -> bool:
        return self.sam_status == YES or self.thalassemia_status == YES


@dataclass
class Person:
    # demographics shared by both flat survey kinds
    full_name: str = ""
    dob: str = ""
    age: Optional[int] = None
    gender: str = ""
    adhar_number: str = ""
    diseases: List[str] = field(default_factory=list)
    education: str = ""
    caste: str = ""
    mobile_no: str = ""

    @staticmethod
    def fields_from(data: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "full_name": clean_text(data.get("full_name")),
            "dob": clean_text(data.get("dob")),
            "age": opt_int(data.get("age")),
            "gender": clean_text(data.get("gender")),
            "adhar_number": clean_text(data.get("adhar_number")),
            "diseases": clean_diseases(data.get("diseases")),
            "education": clean_text(data.get("education")),
            "caste": clean_text(data.get("caste")),
            "mobile_no": clean_text(data.get("mobile_no")),
        }

    def person_row(self) -> Dict[str, Any]:
        return {
            "full_name": self.full_name,
            "dob": self.dob or None,
            "age": self.age,
            "gender": self.gender,
            "adhar_number": self.adhar_number,
            "diseases": list(self.diseases),
            "education": self.education,
            "caste": self.caste,
            "mobile_no": self.mobile_no,
        }


@dataclass
class GeneralSurvey(Person):
    pregnant_woman_present: str = NO
    kids_info: str = ""
    household_id: Optional[int] = None
    member_id: Optional[int] = None

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "GeneralSurvey":
        return cls(
            **cls.fields_from(data),
            pregnant_woman_present=yes_no(data.get("pregnant_woman_present")),
            kids_info=clean_text(data.get("kids_info")),
        )

    def to_row(self) -> Dict[str, Any]:
        row = self.person_row()
        row["pregnant_woman_present"] = self.pregnant_woman_present
        row["kids_info"] = self.kids_info
        if self.household_id is not None:
            row["household_id"] = self.household_id
        if self.member_id is not None:
            row["member_id"] = self.member_id
        return row


@dataclass
class AncSurvey(Person):
    anc: AncDetails = field(default_factory=AncDetails)

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "AncSurvey":
        # accepts the nested anc_details object or the same keys flattened
        nested = data.get("anc_details")
        details = AncDetails.from_payload(nested if isinstance(nested, Mapping) else data)
        return cls(**cls.fields_from(data), anc=details)

    def to_row(self) -> Dict[str, Any]:
        row = self.person_row()
        row.update(self.anc.to_row())
        return row


@dataclass
class Household:
    village_name: str = ""
    house_number: str = ""
    head_name: str = ""
    mobile_no: str = ""
    boys_0_5: int = 0
    girls_0_5: int = 0
    boys_6_14: int = 0
    girls_6_14: int = 0
    boys_15_18: int = 0
    girls_15_18: int = 0

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def children_total(self) -> int:
        return sum(int(getattr(self, b) or 0) for b in CHILD_BUCKETS)


@dataclass
class HouseholdMember:
    full_name: str = ""
    dob: str = ""
    age: Optional[int] = None
    gender: str = ""
    adhar_number: str = ""
    relation_to_head: str = ""
    education: str = ""
    caste: str = ""
    diseases: List[str] = field(default_factory=list)
    is_pregnant: bool = False
    anc: AncDetails = field(default_factory=AncDetails)

    @property
    def needs_anc(self) -> bool:
        return self.is_pregnant and self.gender.lower() == "female"

    def to_row(self, household_id: int) -> Dict[str, Any]:
        return {
            "household_id": household_id,
            "full_name": self.full_name,
            "dob": self.dob or None,
            "age": self.age,
            "gender": self.gender,
            "adhar_number": self.adhar_number or None,
            "relation_to_head": self.relation_to_head,
            "education": self.education,
            "caste": self.caste,
            "diseases": list(self.diseases),
            "is_pregnant": bool(self.is_pregnant),
        }

    def general_health_row(self, household_id: int, member_id: int, mobile_no: str) -> Dict[str, Any]:
        return GeneralSurvey(
            full_name=self.full_name,
            dob=self.dob,
            age=self.age,
            gender=self.gender,
            adhar_number=self.adhar_number,
            diseases=list(self.diseases),
            education=self.education,
            caste=self.caste,
            mobile_no=mobile_no,
            pregnant_woman_present=yes_no(self.needs_anc),
            household_id=household_id,
            member_id=member_id,
        ).to_row()

    def anc_row(self, household_id: int, member_id: int) -> Dict[str, Any]:
        row = self.anc.to_row()
        row["member_id"] = member_id
        row["household_id"] = household_id
        return row


@dataclass
class AdminCredential:
    username: str
    password: str
