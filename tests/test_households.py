from datetime import date

import pytest

import config
from households import (
    DuplicateMemberIdError,
    HouseholdRegistryForm,
    RegistrationError,
    RegistryValidationError,
    calculate_age,
    list_households,
)
from store import StoreConflictError

TODAY = date(2024, 6, 14)


def _form():
    return HouseholdRegistryForm(today=lambda: TODAY)


def _fill(form, members):
    form.update_household("village_name", "Rampur")
    form.update_household("house_number", "12")
    form.update_household("mobile_no", "9876543210")
    form.set_member_count(len(members))
    for i, m in enumerate(members):
        for key, value in m.items():
            form.update_member(i, key, value)
    return form


def _rows(store, table):
    return store.inner.select(table)


@pytest.mark.parametrize(
    "dob,today,expected",
    [
        ("2000-06-15", date(2024, 6, 14), 23),
        ("2000-06-15", date(2024, 6, 15), 24),
        ("2000-06-15", date(2024, 12, 1), 24),
        ("2000-02-29", date(2023, 2, 28), 22),
        ("2030-01-01", date(2024, 6, 14), None),
        ("", date(2024, 6, 14), None),
    ],
)
def test_calculate_age(dob, today, expected):
    assert calculate_age(dob, today) == expected


def test_new_form_has_head_member_expanded():
    form = _form()
    assert form.member_count == 1
    assert form.members[0].relation_to_head == "Self"
    assert form.expanded == {0}


def test_dob_update_recomputes_age():
    form = _form()
    form.update_member(0, "dob", "2000-06-15")
    assert form.members[0].age == 23


def test_head_name_mirrors_both_ways():
    form = _form()
    form.update_household("head_name", "Ramesh")
    assert form.members[0].full_name == "Ramesh"
    form.update_member(0, "full_name", "Ramesh Kumar")
    assert form.household.head_name == "Ramesh Kumar"
    form.set_member_count(2)
    form.update_member(1, "full_name", "Sita")
    assert form.household.head_name == "Ramesh Kumar"


def test_mobile_keeps_digits_only():
    form = _form()
    form.update_household("mobile_no", "+91 98765-43210")
    assert form.household.mobile_no == "919876543210"


def test_child_buckets_clamp_to_zero():
    form = _form()
    form.update_household("boys_0_5", "-3")
    form.update_household("girls_6_14", "2")
    assert form.household.boys_0_5 == 0
    assert form.household.girls_6_14 == 2
    assert form.household.children_total == 2


def test_member_count_grow_and_truncate():
    form = _form()
    form.set_member_count(3)
    form.update_member(2, "full_name", "Third")
    form.toggle_panel(2)
    discarded = form.set_member_count(2)
    assert form.member_count == 2
    assert [m.full_name for m in discarded] == ["Third"]
    assert form.expanded == {0}
    form.set_member_count(0)
    assert form.member_count == 1


def test_lmp_sets_pregnancy_month():
    form = _form()
    form.update_member(0, "anc_lmp_date", "2024-03-01")
    # 105 days
    assert form.members[0].anc.pregnancy_month == 4


def test_toggle_member_disease_none_is_exclusive():
    form = _form()
    form.toggle_member_disease(0, "Diabetes")
    form.toggle_member_disease(0, "Hypertension")
    assert form.toggle_member_disease(0, "None") == ["None"]
    assert form.toggle_member_disease(0, "Asthma") == ["Asthma"]


def test_duplicate_ids_rejected_before_any_write(store):
    form = _fill(_form(), [
        {"full_name": "A", "adhar_number": "1111"},
        {"full_name": "B", "adhar_number": "1111"},
    ])
    with pytest.raises(RegistryValidationError) as err:
        form.submit(store)
    assert "1111" in str(err.value)
    assert store.count("insert", "households") == 0
    assert _rows(store, "households") == []
    assert _rows(store, "household_members") == []


@pytest.mark.parametrize("mobile", ["987654321", "98765432101"])
def test_mobile_must_be_ten_digits(store, mobile):
    form = _fill(_form(), [{"full_name": "A"}])
    form.update_household("mobile_no", mobile)
    with pytest.raises(RegistryValidationError):
        form.submit(store)
    assert store.calls == []


def test_missing_village_house_and_names():
    form = _form()
    form.update_household("mobile_no", "9876543210")
    with pytest.raises(RegistryValidationError) as err:
        form.validate()
    assert err.value.errors == [
        "Village name is required.",
        "House number is required.",
        "Member 1 name is required.",
    ]


def test_submit_writes_household_members_and_anc(store):
    form = _fill(_form(), [
        {"full_name": "Ramesh", "gender": "Male", "adhar_number": "1001", "is_pregnant": True},
        {"full_name": "Sita", "gender": "Female", "adhar_number": "1002", "is_pregnant": True,
         "anc_visits": "2", "sam_status": "Yes"},
        {"full_name": "Gita", "gender": "Female", "adhar_number": "1003"},
    ])
    result = form.submit(store)

    households = _rows(store, "households")
    members = _rows(store, "household_members")
    assert len(households) == 1
    assert households[0]["head_name"] == "Ramesh"
    assert len(members) == 3
    assert all(m["household_id"] == households[0]["id"] for m in members)

    anc = _rows(store, "anc_surveys")
    sita = next(m for m in members if m["full_name"] == "Sita")
    assert len(anc) == 1
    assert anc[0]["member_id"] == sita["id"]
    assert anc[0]["anc_visits"] == 2
    assert anc[0]["sam_status"] == "Yes"

    general = _rows(store, "general_surveys")
    assert len(general) == 3
    assert {g["member_id"] for g in general} == {m["id"] for m in members}
    assert all(g["mobile_no"] == "9876543210" for g in general)

    assert result.household["id"] == households[0]["id"]
    assert len(result.anc_records) == 1
    # form reset after success
    assert form.member_count == 1
    assert form.household.village_name == ""


def test_existing_id_number_reports_duplicate_and_compensates(store):
    _fill(_form(), [{"full_name": "First", "adhar_number": "5555"}]).submit(store)
    form = _fill(_form(), [
        {"full_name": "Other", "adhar_number": "7777"},
        {"full_name": "Clash", "adhar_number": "5555"},
    ])
    with pytest.raises(DuplicateMemberIdError) as err:
        form.submit(store, compensate=True)
    exc = err.value
    assert exc.message == "A member with ID number 5555 is already registered."
    assert isinstance(exc.cause, StoreConflictError)
    assert exc.committed == ["household", "member[0]"]
    assert exc.compensated == ["member[0]", "household"]
    assert exc.left_partial_data is False
    assert len(_rows(store, "households")) == 1
    assert [m["adhar_number"] for m in _rows(store, "household_members")] == ["5555"]
    # draft kept for correction
    assert form.members[1].adhar_number == "5555"


def test_without_compensation_partial_rows_remain(store):
    _fill(_form(), [{"full_name": "First", "adhar_number": "5555"}]).submit(store)
    form = _fill(_form(), [
        {"full_name": "Other", "adhar_number": "7777"},
        {"full_name": "Clash", "adhar_number": "5555"},
    ])
    with pytest.raises(DuplicateMemberIdError) as err:
        form.submit(store, compensate=False)
    assert err.value.left_partial_data is True
    assert err.value.compensated == []
    assert len(_rows(store, "households")) == 2
    assert len(_rows(store, "household_members")) == 2


def test_anc_failure_unwinds_everything(store):
    store.fail("insert", "anc_surveys")
    form = _fill(_form(), [
        {"full_name": "Sita", "gender": "Female", "adhar_number": "1002", "is_pregnant": "Yes"},
    ])
    with pytest.raises(RegistrationError) as err:
        form.submit(store, compensate=True)
    assert not isinstance(err.value, DuplicateMemberIdError)
    assert err.value.committed == ["household", "member[0]", "general[0]"]
    assert err.value.left_partial_data is False
    for table in ("households", "household_members", "general_surveys", "anc_surveys"):
        assert _rows(store, table) == []


def test_inserts_run_in_dependency_order(store):
    _fill(_form(), [
        {"full_name": "Sita", "gender": "Female", "is_pregnant": True},
        {"full_name": "Ram", "gender": "Male"},
    ]).submit(store)
    inserts = [table for op, table in store.calls if op == "insert"]
    assert inserts == [
        "households",
        "household_members",
        "household_members",
        "general_surveys",
        "general_surveys",
        "anc_surveys",
    ]


def test_from_payload_derives_age_and_head():
    form = HouseholdRegistryForm.from_payload(
        {
            "village_name": "Rampur",
            "house_number": "7",
            "mobile_no": "98765 43210",
            "members": [
                {"full_name": "Mohan", "dob": "2000-06-15", "age": 99},
                {"full_name": "Radha", "gender": "Female", "is_pregnant": "Yes",
                 "anc_details": {"lmp_date": "2024-03-01", "anc_visits": 1}},
            ],
        },
        today=lambda: TODAY,
    )
    assert form.household.head_name == "Mohan"
    assert form.household.mobile_no == "9876543210"
    assert form.members[0].age == 23
    assert form.members[1].anc.pregnancy_month == 4
    assert form.members[1].anc.anc_visits == 1
    assert form.members[1].needs_anc


def test_list_households_attaches_members(store):
    _fill(_form(), [{"full_name": "A"}, {"full_name": "B"}]).submit(store)
    _fill(_form(), [{"full_name": "C"}]).submit(store)
    rows = list_households(store)
    assert [h["head_name"] for h in rows] == ["C", "A"]
    assert [m["full_name"] for m in rows[1]["members"]] == ["A", "B"]


def test_member_count_above_limit_rejected_before_allocation():
    form = _form()
    with pytest.raises(RegistryValidationError) as err:
        form.set_member_count(3_000_000)
    assert f"at most {config.MAX_MEMBERS} members" in str(err.value)
    assert form.member_count == 1
    with pytest.raises(RegistryValidationError):
        HouseholdRegistryForm.from_payload({"member_count": 3_000_000, "members": []})
    with pytest.raises(RegistryValidationError):
        HouseholdRegistryForm.from_payload({"members": [{"full_name": "x"}] * (config.MAX_MEMBERS + 1)})


def test_member_count_at_limit_is_accepted():
    form = _form()
    form.set_member_count(config.MAX_MEMBERS)
    assert form.member_count == config.MAX_MEMBERS


def test_pregnant_member_month_out_of_range(store):
    form = _fill(_form(), [
        {"full_name": "Sita", "gender": "Female", "is_pregnant": True, "pregnancy_month": 12},
    ])
    with pytest.raises(RegistryValidationError) as err:
        form.submit(store)
    assert "Member 1 pregnancy month must be between 1 and 9." in err.value.errors
    assert store.calls == []


def test_undo_that_fails_is_reported_as_partial_data(store):
    store.fail("insert", "general_surveys")
    store.fail("delete", "households")
    form = _fill(_form(), [{"full_name": "A", "adhar_number": "1"}])
    with pytest.raises(RegistrationError) as err:
        form.submit(store, compensate=True)
    assert err.value.compensated == ["member[0]"]
    assert err.value.left_partial_data is True
    assert len(_rows(store, "households")) == 1
