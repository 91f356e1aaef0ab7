"""CSV import of existing submissions."""
from datetime import datetime

import pytest

from conftest import T0, login_as, make_form, make_submission
from formdesk.db.models import FormResponse, FormSubmission
from formdesk.utils.importer import parse_timestamp


def _csv(*lines):
    return ("\n".join(lines) + "\n").encode("utf-8")


def _upload(client, form, raw, name="export.csv"):
    return client.post(f"/forms/{form.id}/import", files={"file": (name, raw, "text/csv")})


def _values(db, sub_id):
    rows = db.query(FormResponse).filter(FormResponse.submission_id == sub_id).all()
    return {r.field.field_name: r.value for r in rows}


def test_import_maps_headers_and_derives_entities(db, admin_client, uni_setup):
    form = make_form(db, [("form-code", "text"), ("name", "text"), ("phone", "phone"), ("uni", "database", {"source": "uni_mapping"})])
    raw = _csv(
        "Timestamp,FORM-CODE,Name,Phone,Uni,Notes",
        "3/1/2025 09:30:00,A1,An,0900,Hanoi - Foreign Trade University,hello",
        "2025-03-02T10:00:00,A2,Binh,0911,Somewhere else,",
    )
    resp = _upload(admin_client, form, "\ufeff".encode("utf-8") + raw)

    assert resp.status_code == 200
    body = resp.json()
    assert body["imported"] == 2
    assert body["ignored_columns"] == ["Notes"]
    assert body["recheck"]["total_submissions"] == 2

    subs = db.query(FormSubmission).filter(FormSubmission.form_id == form.id).order_by(FormSubmission.id).all()
    assert [s.timestamp for s in subs] == [datetime(2025, 3, 1, 9, 30), datetime(2025, 3, 2, 10, 0)]
    assert subs[0].entity_id == uni_setup["hn"].entity_id
    assert subs[1].entity_id is None
    assert _values(db, subs[0].id) == {
        "form-code": "A1",
        "name": "An",
        "phone": "0900",
        "uni": str(uni_setup["ftu"].uni_id),
    }
    assert _values(db, subs[1].id)["uni"] == "other--uni-2"


def test_import_skips_known_codes_and_blank_rows(db, admin_client):
    form = make_form(db, [("form-code", "text"), ("phone", "phone")])
    make_submission(db, form, {"form-code": "A1", "phone": "1"}, T0)

    raw = _csv("form-code,phone", "A1,1", "A2,2", ",", "A2,3", ",4")
    body = _upload(admin_client, form, raw).json()

    assert body["imported"] == 2
    assert body["skipped_existing"] == 2
    assert body["skipped_blank"] == 1
    assert db.query(FormSubmission).filter(FormSubmission.form_id == form.id).count() == 3


def test_import_rescans_duplicates(db, admin_client):
    form = make_form(db)
    old = make_submission(db, form, {"phone": "0900"}, T0)

    raw = _csv("phone,submitted at", "0900,2025-04-01")
    body = _upload(admin_client, form, raw).json()

    assert body["recheck"]["duplicates_found"] == 1
    db.expire_all()
    assert db.get(FormSubmission, old.id).duplicated is True


@pytest.mark.parametrize(
    "raw, detail",
    [
        (b"\xff\xfe\x00b", "File must be a UTF-8 encoded CSV"),
        (b"", "CSV has no header row"),
        (b"colour,size\nred,9\n", "No column matches a field of this form"),
    ],
)
def test_import_rejects_unusable_files(db, admin_client, raw, detail):
    form = make_form(db)
    resp = _upload(admin_client, form, raw)
    assert resp.status_code == 400
    assert resp.json()["detail"] == detail
    assert db.query(FormSubmission).count() == 0


def test_import_is_admin_only(db, client, lead):
    form = make_form(db)
    login_as(client, lead)
    assert _upload(client, form, _csv("phone", "1")).status_code == 403


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2025-03-01T09:00:00Z", datetime(2025, 3, 1, 9, 0)),
        ("2025-03-01T16:00:00+07:00", datetime(2025, 3, 1, 9, 0)),
        ("3/1/2025", datetime(2025, 3, 1)),
        ("45717", datetime(2025, 3, 1)),
        ("45717.5", datetime(2025, 3, 1, 12, 0)),
        ("yesterday", None),
        ("", None),
    ],
)
def test_parse_timestamp(raw, expected):
    assert parse_timestamp(raw) == expected
