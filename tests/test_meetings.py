MONDAY, TUESDAY = 1, 2


def book(meetings_client, headers, organization_id, start, end, room_id=None, **extra):
    payload = {
        "title": extra.pop("title", "Weekly meeting"),
        "organization_id": organization_id,
        "start_time": start,
        "end_time": end,
        "room_id": room_id,
        **extra,
    }
    return meetings_client.post("/meetings", json=payload, headers=headers)


def test_create_room_meeting(meetings_client, notifier, make_organization, make_room, slot):
    org_id, headers = make_organization("chess")
    room_id = make_room("Study Room 1")
    start, end = slot(MONDAY, 10)

    resp = book(meetings_client, headers, org_id, start, end, room_id=room_id, advisor="Dr. Reyes")
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["organization_id"] == org_id
    assert body["room"]["name"] == "Study Room 1"
    assert body["advisor"] == "Dr. Reyes"
    assert notifier.kinds() == ["MeetingCreated"]
    assert notifier.events[0][0] == org_id

    list_resp = meetings_client.get(f"/organizations/{org_id}/meetings", headers=headers)
    assert list_resp.status_code == 200
    assert [meeting["id"] for meeting in list_resp.json()] == [body["id"]]


def test_virtual_meeting_needs_no_room(meetings_client, make_organization, slot):
    org_id, headers = make_organization("chess")
    start, end = slot(TUESDAY, 18)

    resp = book(meetings_client, headers, org_id, start, end)
    assert resp.status_code == 201
    assert resp.json()["room"] is None


def test_short_meeting_is_rejected(meetings_client, notifier, make_organization, slot):
    org_id, headers = make_organization("chess")
    start, end = slot(MONDAY, 10, minutes=20)

    resp = book(meetings_client, headers, org_id, start, end)
    assert resp.status_code == 400
    assert resp.json()["reason"] == "invalid_time"
    assert notifier.events == []


def test_overlapping_booking_conflicts(meetings_client, make_organization, make_room, slot):
    chess_id, chess_headers = make_organization("chess")
    debate_id, debate_headers = make_organization("debate")
    room_id = make_room("Study Room 1")

    first = book(meetings_client, chess_headers, chess_id, *slot(MONDAY, 10, start_minute=30), room_id=room_id)
    assert first.status_code == 201

    clash = book(meetings_client, debate_headers, debate_id, *slot(MONDAY, 11), room_id=room_id)
    assert clash.status_code == 409
    assert clash.json() == {"detail": "Room is already booked at that time.", "reason": "room_conflict"}

    after = book(meetings_client, debate_headers, debate_id, *slot(MONDAY, 11, start_minute=30), room_id=room_id)
    assert after.status_code == 201


def test_room_closed_that_day(meetings_client, make_organization, make_room, slot):
    org_id, headers = make_organization("chess")
    room_id = make_room("Monday Room", available_days=["MONDAY"])

    resp = book(meetings_client, headers, org_id, *slot(TUESDAY, 10), room_id=room_id)
    assert resp.status_code == 400
    assert resp.json()["reason"] == "unavailable_day"


def test_room_quota(meetings_client, make_organization, make_room, slot):
    org_id, headers = make_organization("chess")
    room_id = make_room("Study Room 1")

    for hour in range(9, 14):
        assert book(meetings_client, headers, org_id, *slot(MONDAY, hour), room_id=room_id).status_code == 201

    sixth = book(meetings_client, headers, org_id, *slot(MONDAY, 15), room_id=room_id)
    assert sixth.status_code == 400
    assert sixth.json()["reason"] == "quota_exceeded"

    virtual = book(meetings_client, headers, org_id, *slot(MONDAY, 15))
    assert virtual.status_code == 201


def test_unknown_room_is_404(meetings_client, make_organization, slot):
    org_id, headers = make_organization("chess")

    resp = book(meetings_client, headers, org_id, *slot(MONDAY, 10), room_id=999)
    assert resp.status_code == 404


def test_only_organization_managers_schedule(
    meetings_client, organizations_client, make_organization, register_user, slot
):
    org_id, _ = make_organization("chess")
    member_headers = register_user("pawn")
    assert organizations_client.post(f"/organizations/{org_id}/join", headers=member_headers).status_code == 201

    resp = book(meetings_client, member_headers, org_id, *slot(MONDAY, 10))
    assert resp.status_code == 403


def test_pending_organization_cannot_schedule(meetings_client, make_organization, slot):
    org_id, headers = make_organization("chess", state="PENDING")

    resp = book(meetings_client, headers, org_id, *slot(MONDAY, 10))
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Organization is not active"


def test_edit_meeting(meetings_client, notifier, make_organization, make_room, slot):
    org_id, headers = make_organization("chess")
    room_id = make_room("Study Room 1")
    meeting = book(meetings_client, headers, org_id, *slot(MONDAY, 10), room_id=room_id).json()

    start, end = slot(MONDAY, 10, minutes=90, start_minute=30)
    resp = meetings_client.put(
        f"/meetings/{meeting['id']}",
        json={"title": "Longer meeting", "start_time": start, "end_time": end, "room_id": room_id},
        headers=headers,
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["title"] == "Longer meeting"
    assert resp.json()["organization_id"] == org_id
    assert notifier.kinds() == ["MeetingCreated", "MeetingUpdated"]


def test_edit_into_conflict_keeps_original(meetings_client, make_organization, make_room, slot):
    org_id, headers = make_organization("chess")
    room_id = make_room("Study Room 1")
    first = book(meetings_client, headers, org_id, *slot(MONDAY, 10), room_id=room_id).json()
    book(meetings_client, headers, org_id, *slot(MONDAY, 12), room_id=room_id)

    start, end = slot(MONDAY, 12, start_minute=30)
    resp = meetings_client.put(
        f"/meetings/{first['id']}",
        json={"title": first["title"], "start_time": start, "end_time": end, "room_id": room_id},
        headers=headers,
    )
    assert resp.status_code == 409

    listing = meetings_client.get(f"/organizations/{org_id}/meetings", headers=headers).json()
    assert listing[0]["start_time"] == first["start_time"]


def test_delete_meeting(meetings_client, notifier, make_organization, slot):
    org_id, headers = make_organization("chess")
    meeting = book(meetings_client, headers, org_id, *slot(MONDAY, 10), title="Book club").json()

    resp = meetings_client.delete(f"/meetings/{meeting['id']}", headers=headers)
    assert resp.status_code == 204
    assert notifier.kinds() == ["MeetingCreated", "MeetingCanceled"]
    assert meetings_client.delete(f"/meetings/{meeting['id']}", headers=headers).status_code == 404


def test_force_reserve_evicts_occupant(meetings_client, notifier, admin_headers, make_organization, make_room, slot):
    chess_id, chess_headers = make_organization("chess")
    room_id = make_room("Study Room 1")
    occupant = book(meetings_client, chess_headers, chess_id, *slot(MONDAY, 10, start_minute=30), room_id=room_id).json()
    start, end = slot(MONDAY, 10)

    resp = meetings_client.post(
        "/meetings/force-reserve",
        json={"room_id": room_id, "organization_id": chess_id, "start_time": start, "end_time": end},
        headers=admin_headers,
    )
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["evicted_meeting_ids"] == [occupant["id"]]
    assert body["meeting"]["title"] == "Reserved Meeting"
    assert notifier.kinds() == ["MeetingCreated", "MeetingEvicted"]


def test_force_reserve_requires_site_admin(meetings_client, make_organization, make_room, slot):
    org_id, headers = make_organization("chess")
    room_id = make_room("Study Room 1")
    start, end = slot(MONDAY, 10)

    resp = meetings_client.post(
        "/meetings/force-reserve",
        json={"room_id": room_id, "organization_id": org_id, "start_time": start, "end_time": end},
        headers=headers,
    )
    assert resp.status_code == 403


def test_outsiders_see_only_public_meetings(meetings_client, make_organization, register_user, slot):
    org_id, headers = make_organization("chess")
    book(meetings_client, headers, org_id, *slot(MONDAY, 10), title="Open night")
    book(meetings_client, headers, org_id, *slot(MONDAY, 12), title="Officers only", is_public=False)

    outsider = register_user("visitor")
    listing = meetings_client.get(f"/organizations/{org_id}/meetings", headers=outsider).json()
    assert [meeting["title"] for meeting in listing] == ["Open night"]

    members_view = meetings_client.get(f"/organizations/{org_id}/meetings", headers=headers).json()
    assert len(members_view) == 2
