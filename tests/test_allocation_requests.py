"""Lead requests -> admin approves / rejects."""
from conftest import login_as, make_entity, make_form, make_submission, make_user
from formdesk.db.models import AllocationRequest, FormSubmission, Notification
from formdesk.db.models.user import Role


def _setup(db, organic):
    form = make_form(db)
    target = make_entity(db, "AIESEC in HCM")
    sub = make_submission(db, form, {"phone": "0900"}, entity_id=organic.entity_id)
    return form, target, sub


def _create(client, sub, target):
    return client.post("/allocation-requests", json={"submission_id": sub.id, "requested_entity_id": target.entity_id})


def test_second_pending_request_conflicts(db, client, lead, admin, organic):
    _, target, sub = _setup(db, organic)
    login_as(client, lead)

    assert _create(client, sub, target).status_code == 201
    resp = _create(client, sub, target)
    assert resp.status_code == 409
    assert db.query(AllocationRequest).count() == 1


def test_new_request_allowed_after_rejection(db, client, lead, admin, organic):
    _, target, sub = _setup(db, organic)
    login_as(client, lead)
    rid = _create(client, sub, target).json()["request"]["id"]

    login_as(client, admin)
    resp = client.put(f"/allocation-requests/{rid}", json={"action": "reject", "admin_notes": "not ours"})
    assert resp.status_code == 200
    assert resp.json()["request"]["status"] == "rejected"
    db.expire_all()
    assert db.get(FormSubmission, sub.id).entity_id == organic.entity_id

    login_as(client, lead)
    assert _create(client, sub, target).status_code == 201


def test_approval_allocates_and_allows_new_request(db, client, lead, admin, organic):
    _, target, sub = _setup(db, organic)
    other = make_entity(db, "AIESEC in Hanoi")
    login_as(client, lead)
    rid = _create(client, sub, target).json()["request"]["id"]

    login_as(client, admin)
    assert client.put(f"/allocation-requests/{rid}", json={"action": "approve"}).status_code == 200
    db.expire_all()
    assert db.get(FormSubmission, sub.id).entity_id == target.entity_id

    login_as(client, lead)
    # same entity again is pointless
    assert _create(client, sub, target).status_code == 400
    assert _create(client, sub, other).status_code == 201


def test_only_pending_can_be_decided(db, client, lead, admin, organic):
    _, target, sub = _setup(db, organic)
    login_as(client, lead)
    rid = _create(client, sub, target).json()["request"]["id"]

    login_as(client, admin)
    client.put(f"/allocation-requests/{rid}", json={"action": "reject"})
    resp = client.put(f"/allocation-requests/{rid}", json={"action": "approve"})
    assert resp.status_code == 409
    db.expire_all()
    assert db.get(FormSubmission, sub.id).entity_id == organic.entity_id


def test_invalid_action(db, client, lead, admin, organic):
    _, target, sub = _setup(db, organic)
    login_as(client, lead)
    rid = _create(client, sub, target).json()["request"]["id"]
    login_as(client, admin)
    assert client.put(f"/allocation-requests/{rid}", json={"action": "maybe"}).status_code == 400


def test_notifications_flow(db, client, lead, admin, organic):
    second_admin = make_user(db, Role.ADMIN)
    _, target, sub = _setup(db, organic)
    login_as(client, lead)
    rid = _create(client, sub, target).json()["request"]["id"]

    admin_notes = db.query(Notification).filter(Notification.type == "allocation_request").all()
    assert sorted(n.user_id for n in admin_notes) == sorted([admin.id, second_admin.id])

    login_as(client, admin)
    client.put(f"/allocation-requests/{rid}", json={"action": "approve"})

    login_as(client, lead)
    body = client.get("/notifications").json()
    assert body["unread"] == 1
    assert body["notifications"][0]["type"] == "allocation_approved"
    assert body["notifications"][0]["data"]["request_id"] == rid


def test_only_leads_create(db, client, member, admin, organic):
    _, target, sub = _setup(db, organic)
    login_as(client, member)
    assert _create(client, sub, target).status_code == 403
    login_as(client, admin)
    assert _create(client, sub, target).status_code == 403


def test_only_admins_decide(db, client, lead, organic):
    _, target, sub = _setup(db, organic)
    login_as(client, lead)
    rid = _create(client, sub, target).json()["request"]["id"]
    assert client.put(f"/allocation-requests/{rid}", json={"action": "approve"}).status_code == 403


def test_unknown_entity_or_submission(db, client, lead, organic):
    _, target, sub = _setup(db, organic)
    login_as(client, lead)
    assert client.post("/allocation-requests", json={"submission_id": sub.id, "requested_entity_id": 999}).status_code == 404
    assert client.post("/allocation-requests", json={"submission_id": 999, "requested_entity_id": target.entity_id}).status_code == 404


def test_lead_sees_own_requests_admin_sees_all(db, client, lead, admin, organic):
    form, target, sub = _setup(db, organic)
    other_lead = make_user(db, Role.LEAD)
    sub2 = make_submission(db, form, {"phone": "0901"})

    login_as(client, lead)
    _create(client, sub, target)
    login_as(client, other_lead)
    _create(client, sub2, target)

    assert client.get("/allocation-requests").json()["pagination"]["total"] == 1
    login_as(client, admin)
    assert client.get("/allocation-requests").json()["pagination"]["total"] == 2
    assert client.get("/allocation-requests?status=approved").json()["pagination"]["total"] == 0
    assert client.get("/allocation-requests?status=bogus").status_code == 400


def test_withdraw_pending_request(db, client, lead, admin, organic):
    _, target, sub = _setup(db, organic)
    other_lead = make_user(db, Role.LEAD)
    login_as(client, lead)
    rid = _create(client, sub, target).json()["request"]["id"]

    login_as(client, other_lead)
    assert client.delete(f"/allocation-requests/{rid}").status_code == 403

    login_as(client, lead)
    assert client.get(f"/allocation-requests/{rid}").json()["request"]["submission"]["id"] == sub.id
    assert client.delete(f"/allocation-requests/{rid}").status_code == 200
    assert db.query(AllocationRequest).count() == 0


def test_concurrent_duplicate_request_is_refused_by_the_database(db, client, lead, admin, organic, monkeypatch):
    _, target, sub = _setup(db, organic)
    login_as(client, lead)
    assert _create(client, sub, target).status_code == 201

    # a second request that passed the check before the first one committed
    monkeypatch.setattr("formdesk.modules.allocation.router.has_pending_request", lambda db, sid: False)
    resp = _create(client, sub, target)

    assert resp.status_code == 409
    assert resp.json()["detail"] == "A pending request already exists for this submission"
    assert db.query(AllocationRequest).count() == 1
    assert db.query(Notification).filter(Notification.type == "allocation_request").count() == 1


def test_decided_request_releases_pending_marker(db, client, lead, admin, organic):
    _, target, sub = _setup(db, organic)
    login_as(client, lead)
    rid = _create(client, sub, target).json()["request"]["id"]
    assert db.get(AllocationRequest, rid).pending_submission_id == sub.id

    login_as(client, admin)
    client.put(f"/allocation-requests/{rid}", json={"action": "reject"})
    db.expire_all()
    assert db.get(AllocationRequest, rid).pending_submission_id is None
