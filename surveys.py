# surveys.py — HealthPulse Collect
# Single-person survey entry: general health or antenatal care (ANC)

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from models import (
    AncDetails,
    AncSurvey,
    GeneralSurvey,
    NO,
    clean_diseases,
    clean_text,
    opt_int,
    pregnancy_month_from_lmp,
    toggle_disease,
)
from store import RecordStore, StoreError

logger = logging.getLogger(__name__)

GENERAL = "general"
ANTENATAL = "antenatal"
SURVEY_TYPES = (GENERAL, ANTENATAL)

TABLES = {GENERAL: "general_surveys", ANTENATAL: "anc_surveys"}

REQUIRED_FIELDS = (
    "full_name",
    "mobile_no",
    "dob",
    "age",
    "gender",
    "adhar_number",
    "education",
    "caste",
)

# antenatal only; pregnancy_month may instead be derived from lmp_date
ANC_REQUIRED_FIELDS = (
    "lmp_date",
    "pregnancy_month",
    "anc_visits",
    "children_no",
)
PREGNANCY_MONTHS = range(1, 10)

SUBMIT_ERROR = "Failed to submit survey. Please verify the database connection."
SUBMIT_OK = "Survey submitted successfully!"


class SurveyValidationError(ValueError):
    def __init__(self, missing: List[str], message: Optional[str] = None):
        super().__init__(message or "Missing required fields: " + ", ".join(missing))
        self.missing = missing


class SurveySubmitError(Exception):
    """The single insert failed; the message is the generic user-facing one."""

    def __init__(self, cause: StoreError):
        super().__init__(SUBMIT_ERROR)
        self.cause = cause


def _blank_fields() -> Dict[str, Any]:
    return {
        "full_name": "",
        "dob": "",
        "age": "",
        "gender": "",
        "adhar_number": "",
        "diseases": [],
        "education": "",
        "caste": "",
        "pregnant_woman_present": NO,
        "mobile_no": "",
        "kids_info": "",
    }


def _blank_anc() -> Dict[str, Any]:
    return {
        "pregnancy_month": "",
        "anc_visits": "",
        "tetanus_injection": NO,
        "iron_supplements": NO,
        "children_no": "",
        "lmp_date": "",
        "sam_status": NO,
        "mam_status": NO,
        "thalassemia_status": NO,
    }


def missing_required(fields: Dict[str, Any]) -> List[str]:
    return [name for name in REQUIRED_FIELDS if clean_text(fields.get(name)) == ""]


def anc_pregnancy_month(anc: Dict[str, Any]) -> Optional[int]:
    month = opt_int(anc.get("pregnancy_month"))
    if month is None:
        month = pregnancy_month_from_lmp(anc.get("lmp_date"))
    return month


def missing_anc_required(anc: Dict[str, Any]) -> List[str]:
    missing = []
    for name in ANC_REQUIRED_FIELDS:
        if name == "pregnancy_month":
            if anc_pregnancy_month(anc) is None:
                missing.append(name)
        elif clean_text(anc.get(name)) == "":
            missing.append(name)
    return missing


class SurveyEntryForm:
    """
    Draft state of one flat survey. Submitting issues exactly one insert;
    nothing is retried and a failure leaves no partial state behind.
    """

    def __init__(self, survey_type: str = GENERAL):
        self.survey_type = GENERAL
        self.fields: Dict[str, Any] = _blank_fields()
        self.anc_details: Dict[str, Any] = _blank_anc()
        self.select_type(survey_type)

    @classmethod
    def from_payload(cls, survey_type: str, data: Dict[str, Any]) -> "SurveyEntryForm":
        form = cls(survey_type)
        for key, value in (data or {}).items():
            if key == "anc_details" and isinstance(value, dict):
                for anc_key, anc_value in value.items():
                    if anc_key in form.anc_details:
                        form.set_anc_field(anc_key, anc_value)
            else:
                try:
                    form.set_field(key, value)
                except KeyError:
                    continue
        return form

    def select_type(self, survey_type: str) -> None:
        survey_type = clean_text(survey_type).lower()
        if survey_type not in SURVEY_TYPES:
            raise ValueError(f"Unknown survey type: {survey_type!r}")
        self.survey_type = survey_type

    def set_field(self, name: str, value: Any) -> None:
        # "anc_<field>" mirrors the form's naming of nested ANC inputs
        if name.startswith("anc_") and name[4:] in self.anc_details:
            self.set_anc_field(name[4:], value)
            return
        if name not in self.fields:
            if name in self.anc_details:
                self.set_anc_field(name, value)
                return
            raise KeyError(name)
        if name == "diseases":
            value = clean_diseases(value)
        self.fields[name] = value

    def set_anc_field(self, name: str, value: Any) -> None:
        if name not in self.anc_details:
            raise KeyError(name)
        self.anc_details[name] = value

    def toggle_disease(self, disease: str) -> List[str]:
        self.fields["diseases"] = toggle_disease(self.fields["diseases"], disease)
        return self.fields["diseases"]

    def validate(self) -> None:
        missing = missing_required(self.fields)
        if self.survey_type == ANTENATAL:
            missing += missing_anc_required(self.anc_details)
        if missing:
            raise SurveyValidationError(missing)
        if self.survey_type == ANTENATAL and anc_pregnancy_month(self.anc_details) not in PREGNANCY_MONTHS:
            raise SurveyValidationError(["pregnancy_month"], "Pregnancy month must be between 1 and 9.")

    def build_row(self) -> Dict[str, Any]:
        if self.survey_type == GENERAL:
            return GeneralSurvey.from_payload(self.fields).to_row()
        survey = AncSurvey.from_payload(self.fields)
        survey.anc = AncDetails.from_payload(self.anc_details)
        return survey.to_row()

    def submit(
        self,
        store: RecordStore,
        on_success: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> Dict[str, Any]:
        self.validate()
        table = TABLES[self.survey_type]
        try:
            row = store.insert(table, self.build_row())
        except StoreError as exc:
            logger.error("Survey submission to %s failed: %s", table, exc)
            raise SurveySubmitError(exc) from exc
        logger.info("Stored %s survey id=%s", self.survey_type, row.get("id"))
        self.reset()
        if on_success:
            on_success(row)
        return row

    def reset(self) -> None:
        self.fields = _blank_fields()
        self.anc_details = _blank_anc()


# -------------------------
# Server-side operations
# -------------------------

def create_general_survey(store: RecordStore, payload: Dict[str, Any]) -> Dict[str, Any]:
    return SurveyEntryForm.from_payload(GENERAL, payload).submit(store)


def create_anc_survey(store: RecordStore, payload: Dict[str, Any]) -> Dict[str, Any]:
    return SurveyEntryForm.from_payload(ANTENATAL, payload).submit(store)


def list_general_surveys(store: RecordStore, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    return store.select_recent("general_surveys", limit=limit)


def list_anc_surveys(store: RecordStore, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    return store.select_recent("anc_surveys", limit=limit)
