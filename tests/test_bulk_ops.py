"""Move / bulk delete / UTM edits / single field edits / clean view."""
import pytest

from conftest import T0, field_id, hours, login_as, make_entity, make_form, make_submission
from formdesk.db.models import AllocationRequest, FormResponse, FormSubmission
from formdesk.db.models.allocation_request import AllocationStatus


def _values(db, sub_id):
    rows = db.query(FormResponse).filter(FormResponse.submission_id == sub_id).all()
    return {r.field.field_name: r.value for r in rows}


@pytest.fixture
def forms(db):
    source = make_form(db, [("name", "text"), ("phone", "phone"), ("email", "email"), ("note", "textarea")], code="src")
    target = make_form(db, [("phone", "phone"), ("email", "email"), ("name", "text")], code="dst")
    return source, target


def test_move_copies_and_deletes(db, admin_client, forms, organic):
    source, target = forms
    e = make_entity(db, "LC")
    sub = make_submission(
        db, source, {"name": "An", "phone": "0900", "email": "an@x.vn", "note": "hi"}, T0, entity_id=e.entity_id
    )
    keep = make_submission(db, source, {"name": "Binh", "phone": "0911"}, T0)

    resp = admin_client.post(
        f"/forms/{source.id}/submissions/move", json={"submission_ids": [sub.id, 12345], "target_form_id": target.id}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["moved"] == 1
    assert body["skipped"] == 1
    new_id = body["new_ids"][str(sub.id)]

    db.expire_all()
    assert db.get(FormSubmission, sub.id) is None
    assert db.get(FormSubmission, keep.id) is not None
    copy = db.get(FormSubmission, new_id)
    assert copy.form_id == target.id
    assert copy.timestamp == T0
    assert copy.entity_id == e.entity_id
    # "note" has no counterpart in the target form
    assert _values(db, new_id) == {"name": "An", "phone": "0900", "email": "an@x.vn"}


def test_move_rescans_target(db, admin_client, forms):
    source, target = forms
    newer = make_submission(db, target, {"phone": "0900", "email": "a@x.vn"}, T0 + hours(5))
    old = make_submission(db, source, {"phone": "0900", "email": "a@x.vn"}, T0)

    body = admin_client.post(
        f"/forms/{source.id}/submissions/move", json={"submission_ids": [old.id], "target_form_id": target.id}
    ).json()
    assert body["target_recheck"]["duplicates_found"] == 1

    db.expire_all()
    copy = db.get(FormSubmission, body["new_ids"][str(old.id)])
    assert copy.duplicated is True
    assert db.get(FormSubmission, newer.id).duplicated is False


def test_move_removes_requests_of_originals(db, client, admin, lead, forms):
    source, target = forms
    e = make_entity(db, "LC")
    sub = make_submission(db, source, {"phone": "1"})
    login_as(client, lead)
    client.post("/allocation-requests", json={"submission_id": sub.id, "requested_entity_id": e.entity_id})
    assert db.query(AllocationRequest).filter(AllocationRequest.status == AllocationStatus.PENDING).count() == 1

    login_as(client, admin)
    client.post(f"/forms/{source.id}/submissions/move", json={"submission_ids": [sub.id], "target_form_id": target.id})
    assert db.query(AllocationRequest).count() == 0


def test_move_validation(db, admin_client, forms):
    source, target = forms
    sub = make_submission(db, source, {"phone": "1"})
    url = f"/forms/{source.id}/submissions/move"
    assert admin_client.post(url, json={"submission_ids": [sub.id], "target_form_id": source.id}).status_code == 400
    assert admin_client.post(url, json={"submission_ids": [sub.id], "target_form_id": 999}).status_code == 404
    # submissions of another form are not ours to move
    other = make_submission(db, target, {"phone": "2"})
    assert admin_client.post(url, json={"submission_ids": [other.id], "target_form_id": target.id}).status_code == 400


def test_bulk_delete(db, admin_client, forms):
    source, target = forms
    a = make_submission(db, source, {"phone": "1"})
    b = make_submission(db, source, {"phone": "2"})
    foreign = make_submission(db, target, {"phone": "3"})

    resp = admin_client.post(
        f"/forms/{source.id}/submissions/bulk-delete", json={"submission_ids": [a.id, foreign.id]}
    )
    assert resp.json() == {"success": True, "deleted": 1, "requested": 2}
    db.expire_all()
    assert db.get(FormSubmission, a.id) is None
    assert db.get(FormSubmission, b.id) is not None
    assert db.get(FormSubmission, foreign.id) is not None
    assert db.query(FormResponse).filter(FormResponse.submission_id == a.id).count() == 0


def test_bulk_delete_requires_admin(db, client, member, forms):
    source, _ = forms
    a = make_submission(db, source, {"phone": "1"})
    login_as(client, member)
    assert client.post(f"/forms/{source.id}/submissions/bulk-delete", json={"submission_ids": [a.id]}).status_code == 403


def test_bulk_edit_utm_upserts(db, admin_client):
    form = make_form(db, [("phone", "phone"), ("utm_source", "text"), ("utm_medium", "text")])
    a = make_submission(db, form, {"phone": "1", "utm_source": "fb"})
    b = make_submission(db, form, {"phone": "2"})

    resp = admin_client.post(
        f"/forms/{form.id}/submissions/bulk-edit-utm",
        json={"submission_ids": [a.id, b.id], "updates": {"utm_source": "tiktok", "utm_campaign": "x", "phone": "hack"}},
    )
    assert resp.status_code == 200
    # utm_campaign is not a field of this form; phone is not a UTM field
    assert resp.json()["fields"] == ["utm_source"]

    db.expire_all()
    assert _values(db, a.id) == {"phone": "1", "utm_source": "tiktok"}
    assert _values(db, b.id) == {"phone": "2", "utm_source": "tiktok"}


def test_bulk_edit_utm_without_utm_keys(db, admin_client):
    form = make_form(db, [("phone", "phone"), ("utm_source", "text")])
    a = make_submission(db, form, {"phone": "1"})
    resp = admin_client.post(
        f"/forms/{form.id}/submissions/bulk-edit-utm", json={"submission_ids": [a.id], "updates": {"phone": "2"}}
    )
    assert resp.status_code == 400


def test_edit_field_returns_label(db, admin_client, uni_setup):
    form = make_form(db, [("phone", "phone"), ("uni", "text"), ("lc", "database", {"source": "entity"})])
    sub = make_submission(db, form, {"phone": "1"})

    resp = admin_client.put(
        f"/forms/{form.id}/submissions/{sub.id}/edit-field",
        json={"field_name": "uni", "value": str(uni_setup["ftu"].uni_id)},
    )
    assert resp.status_code == 200
    assert resp.json()["value_label"] == "Hanoi - Foreign Trade University"

    resp = admin_client.put(
        f"/forms/{form.id}/submissions/{sub.id}/edit-field",
        json={"field_name": "lc", "value": str(uni_setup["hn"].entity_id)},
    )
    assert resp.json()["value_label"] == "AIESEC in Hanoi"

    resp = admin_client.put(
        f"/forms/{form.id}/submissions/{sub.id}/edit-field", json={"field_name": "phone", "value": "0999"}
    )
    assert resp.json()["value_label"] == "0999"
    db.expire_all()
    assert _values(db, sub.id)["phone"] == "0999"


def test_edit_field_unknown_field(db, admin_client):
    form = make_form(db)
    sub = make_submission(db, form, {"phone": "1"})
    resp = admin_client.put(f"/forms/{form.id}/submissions/{sub.id}/edit-field", json={"field_name": "nope", "value": "x"})
    assert resp.status_code == 404


def test_clean_view_keeps_latest_per_key(db, admin_client):
    form = make_form(db, [("form-code", "text"), ("email", "email"), ("phone", "phone")])
    old = make_submission(db, form, {"email": "a@x.vn", "phone": "1"}, T0)
    new = make_submission(db, form, {"email": "a@x.vn", "phone": "2"}, T0 + hours(1))
    anon_1 = make_submission(db, form, {"email": "", "phone": ""}, T0)
    anon_2 = make_submission(db, form, {}, T0)

    body = admin_client.get(f"/forms/{form.id}/submissions/clean").json()
    ids = [s["id"] for s in body["submissions"]]
    assert old.id not in ids
    assert ids[0] == new.id
    assert set(ids) == {new.id, anon_1.id, anon_2.id}
    assert body["total_raw"] == 4
    # display only: flags are untouched
    db.expire_all()
    assert db.get(FormSubmission, old.id).duplicated is False


def test_list_excludes_flagged_on_request(db, admin_client):
    form = make_form(db)
    a = make_submission(db, form, {"phone": "1"}, T0, duplicated=True)
    b = make_submission(db, form, {"phone": "1"}, T0 + hours(1))

    all_ids = [s["id"] for s in admin_client.get(f"/forms/{form.id}/submissions").json()["submissions"]]
    assert all_ids == [b.id, a.id]
    body = admin_client.get(f"/forms/{form.id}/submissions?include_duplicates=false").json()
    assert [s["id"] for s in body["submissions"]] == [b.id]
    assert body["submissions"][0]["responses"]["phone"]["value"] == "1"
    assert body["submissions"][0]["duplicated"] is False
