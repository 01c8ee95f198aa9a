from datetime import datetime, timezone

import pytest

from mentacare.models import COL_USERS


@pytest.fixture(autouse=True)
def _as_admin(login):
    login("admin")


def _data(resp):
    return resp.get_json()["data"]


def test_create_patient_applies_defaults(client):
    resp = client.post(
        "/api/patients",
        json={"name": "Maya Chen", "email": "maya@example.com", "age": 28, "emergencyContact": "Lee 555-0100"},
    )

    assert resp.status_code == 201
    patient = _data(resp)
    assert patient["name"] == patient["full_name"] == "Maya Chen"
    assert patient["isProfileComplete"] is True
    assert patient["assignedTherapist"] is None
    assert patient["flags"] == []
    assert patient["documents"] == []
    assert patient["emergencyContact"] == "Lee 555-0100"
    assert patient["createdAt"].endswith("Z")


def test_create_patient_rejects_duplicate_email(client, make_patient):
    make_patient(email="taken@example.com")
    resp = client.post("/api/patients", json={"name": "Other", "email": "taken@example.com"})
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False


def test_create_patient_validates_payload(client):
    resp = client.post("/api/patients", json={"name": "No Email", "email": "nope"})
    assert resp.status_code == 400
    assert "email" in resp.get_json()["message"]


def test_list_pages_with_cursor(client, make_patient):
    for _ in range(11):
        make_patient()

    first = _data(client.get("/api/patients?pageSize=10"))
    assert len(first["patients"]) == 10
    assert first["hasMore"] is True
    assert first["lastDocId"] == first["patients"][-1]["id"]
    assert first["patients"][0]["name"] == "Patient 11"

    second = _data(client.get(f"/api/patients?pageSize=10&lastDocId={first['lastDocId']}"))
    assert [p["name"] for p in second["patients"]] == ["Patient 1"]
    assert second["hasMore"] is False


def test_list_joins_therapist_projection(client, make_patient, make_therapist):
    therapist = make_therapist(name="Dr. Rivera", email="rivera@example.com")
    make_patient(assignedTherapist=therapist["id"])
    make_patient(assignedTherapist="deleted-therapist")
    make_patient()

    patients = _data(client.get("/api/patients"))["patients"]
    by_ref = {p["assignedTherapist"]: p for p in patients}

    assert by_ref[therapist["id"]]["assigned_therapist_info"] == {
        "id": therapist["id"],
        "full_name": "Dr. Rivera",
        "email": "rivera@example.com",
    }
    assert "assigned_therapist_info" not in by_ref["deleted-therapist"]
    assert "assigned_therapist_info" not in by_ref[None]


def test_list_filters(client, make_patient):
    make_patient(name="Jordan Blake", age=16, isProfileComplete=False)
    make_patient(name="Sam Ortiz", age=45)
    make_patient(name="Jordan Kim", age=45)

    keyword = _data(client.get("/api/patients?keyword=JORDAN"))["patients"]
    assert sorted(p["name"] for p in keyword) == ["Jordan Blake", "Jordan Kim"]

    minors = _data(client.get("/api/patients", query_string={"ageGroup": "Under 18"}))["patients"]
    assert [p["name"] for p in minors] == ["Jordan Blake"]

    incomplete = _data(client.get("/api/patients?profileComplete=false"))
    assert [p["name"] for p in incomplete["patients"]] == ["Jordan Blake"]
    assert incomplete["total"] == 1


def test_list_is_cached_until_a_patient_mutation(client, make_patient, clock):
    make_patient()
    assert _data(client.get("/api/patients"))["total"] == 1

    # Written behind the API's back: the cached page stays.
    make_patient()
    assert _data(client.get("/api/patients"))["total"] == 1

    client.post("/api/patients", json={"name": "New", "email": "new@example.com"})
    assert _data(client.get("/api/patients"))["total"] == 3


def test_list_cache_expires(client, make_patient, clock):
    make_patient()
    client.get("/api/patients")
    make_patient()
    clock.advance(300)
    assert _data(client.get("/api/patients"))["total"] == 2


def test_get_patient_detail(client, make_patient, make_therapist):
    therapist = make_therapist()
    patient = make_patient(age=30, concerns="Panic attacks", assignedTherapist=therapist["id"])

    data = _data(client.get(f"/api/patients/{patient['id']}"))

    year = datetime.now(timezone.utc).year
    assert data["dob"] == f"{year - 30}-01-01T00:00:00.000Z"
    assert data["notes"] == ["Panic attacks"]
    assert data["assigned_therapist"] == therapist["id"]
    assert data["assigned_therapist_info"]["id"] == therapist["id"]


def test_get_patient_404_for_other_roles(client, make_therapist):
    therapist = make_therapist()
    assert client.get(f"/api/patients/{therapist['id']}").status_code == 404
    assert client.get("/api/patients/missing").status_code == 404


def test_legacy_field_names_are_read(client, store):
    row = store.collection(COL_USERS).insert(
        {"full_name": "Legacy Person", "role": "patient", "assigned_therapist": "t-old", "createdAt": "2023-01-01"}
    )
    data = _data(client.get(f"/api/patients/{row['id']}"))
    assert data["name"] == "Legacy Person"
    assert data["assignedTherapist"] == "t-old"


def test_update_patient(client, make_patient):
    patient = make_patient(name="Before", age=30)

    resp = client.put(f"/api/patients/{patient['id']}", json={"name": "After", "age": 30})

    assert resp.status_code == 200
    assert _data(resp)["name"] == "After"
    assert _data(resp)["updatedAt"] != patient["updatedAt"]


def test_update_with_assignment_refreshes_snapshot(client, store, make_patient, make_therapist):
    therapist = make_therapist(name="Dr. Okafor", title="Counselor", specialization="Grief")
    patient = make_patient()

    client.put(f"/api/patients/{patient['id']}", json={"assignedTherapist": therapist["id"]})

    stored = store.collection(COL_USERS).get(patient["id"])
    assert stored["assignedTherapist"] == therapist["id"]
    assert stored["assignedTherapistInfo"]["name"] == "Dr. Okafor"
    assert stored["assignedTherapistInfo"]["specialization"] == "Grief"

    client.put(f"/api/patients/{patient['id']}", json={"assignedTherapist": None})
    stored = store.collection(COL_USERS).get(patient["id"])
    assert stored["assignedTherapist"] is None
    assert "assignedTherapistInfo" not in stored


def test_update_with_unknown_therapist(client, make_patient):
    patient = make_patient()
    resp = client.put(f"/api/patients/{patient['id']}", json={"assignedTherapist": "nobody"})
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Invalid therapist ID"


def test_assign_therapist(client, store, make_patient, make_therapist):
    therapist = make_therapist(name="Dr. Patel")
    patient = make_patient()

    resp = client.put(f"/api/patients/{patient['id']}/assign-therapist", json={"therapistId": therapist["id"]})

    assert resp.status_code == 200
    assert _data(resp)["assignedTherapist"] == therapist["id"]
    assert store.collection(COL_USERS).get(patient["id"])["assignedTherapistInfo"]["name"] == "Dr. Patel"


def test_assign_therapist_rejects_patient_id_as_therapist(client, make_patient):
    patient = make_patient()
    other = make_patient()
    resp = client.put(f"/api/patients/{patient['id']}/assign-therapist", json={"therapistId": other["id"]})
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Invalid therapist ID"


def test_assign_therapist_requires_id(client, make_patient):
    patient = make_patient()
    assert client.put(f"/api/patients/{patient['id']}/assign-therapist", json={}).status_code == 400


def test_assignment_invalidates_therapist_views(client, make_patient, make_therapist):
    therapist = make_therapist()
    patient = make_patient()
    before = _data(client.get("/api/therapists"))["therapists"][0]["assignedPatientsCount"]

    client.put(f"/api/patients/{patient['id']}/assign-therapist", json={"therapistId": therapist["id"]})

    after = _data(client.get("/api/therapists"))["therapists"][0]["assignedPatientsCount"]
    assert (before, after) == (0, 1)


def test_flag_is_idempotent(client, make_patient):
    patient = make_patient(flags=["Self-harm risk"])

    client.put(f"/api/patients/{patient['id']}/flag", json={"flag": "High Risk"})
    resp = client.put(f"/api/patients/{patient['id']}/flag", json={"flag": "High Risk"})

    assert _data(resp)["flags"] == ["Self-harm risk", "High Risk"]


def test_flag_requires_value(client, make_patient):
    patient = make_patient()
    assert client.put(f"/api/patients/{patient['id']}/flag", json={"flag": " "}).status_code == 400


def test_documents_are_appended(client, make_patient):
    patient = make_patient(documents=["/docs/intake.pdf"])

    resp = client.put(f"/api/patients/{patient['id']}/documents", json={"documentUrl": "/docs/consent.pdf"})

    assert _data(resp)["documents"] == ["/docs/intake.pdf", "/docs/consent.pdf"]


def test_delete_patient(client, make_patient, make_therapist):
    patient = make_patient()
    therapist = make_therapist()

    assert client.delete(f"/api/patients/{patient['id']}").status_code == 200
    assert client.get(f"/api/patients/{patient['id']}").status_code == 404
    assert client.delete(f"/api/patients/{therapist['id']}").status_code == 404


def test_summary(client, make_patient):
    make_patient(isProfileComplete=True, flags=["x"])
    make_patient(isProfileComplete=True)
    make_patient(isProfileComplete=False)

    assert _data(client.get("/api/patients/summary")) == {
        "total": 3,
        "complete": 2,
        "flagged": 1,
        "incomplete": 1,
        "active": 2,
        "inactive": 1,
    }


def test_batch_update(client, store, make_patient):
    a, b = make_patient(), make_patient()

    resp = client.put(
        "/api/patients/batch-update",
        json={"patientIds": [a["id"], b["id"]], "updateData": {"isProfileComplete": False, "role": "admin"}},
    )

    assert resp.status_code == 200
    assert _data(resp) == {"updatedCount": 2}
    for pid in (a["id"], b["id"]):
        stored = store.collection(COL_USERS).get(pid)
        assert stored["isProfileComplete"] is False
        assert stored["role"] == "patient"


def test_batch_update_validation(client, make_patient, make_therapist):
    patient = make_patient()
    therapist = make_therapist()

    empty = client.put("/api/patients/batch-update", json={"patientIds": [], "updateData": {"age": 3}})
    assert empty.status_code == 400

    protected_only = client.put(
        "/api/patients/batch-update", json={"patientIds": [patient["id"]], "updateData": {"role": "x"}}
    )
    assert protected_only.status_code == 400

    wrong_role = client.put(
        "/api/patients/batch-update", json={"patientIds": [therapist["id"]], "updateData": {"age": 3}}
    )
    assert wrong_role.status_code == 404

    too_many = client.put(
        "/api/patients/batch-update",
        json={"patientIds": [f"p{i}" for i in range(501)], "updateData": {"age": 3}},
    )
    assert too_many.status_code == 400


def test_search(client, make_patient):
    make_patient(name="Ana Lopez", gender="Female", concerns="insomnia", flags=["watch"])
    make_patient(name="Ben Stone", gender="Male", concerns="Insomnia")
    make_patient(name="Cara Diaz", gender="Female")

    by_term = _data(client.get("/api/patients/search?searchTerm=insomnia&sortBy=name&sortOrder=asc"))
    assert [p["name"] for p in by_term["patients"]] == ["Ana Lopez", "Ben Stone"]

    query = {"filters[gender]": "Female", "sortBy": "name", "sortOrder": "asc"}
    bracketed = _data(client.get("/api/patients/search", query_string=query))
    assert [p["name"] for p in bracketed["patients"]] == ["Ana Lopez", "Cara Diaz"]

    flagged = _data(client.get("/api/patients/search?hasFlags=true"))
    assert [p["name"] for p in flagged["patients"]] == ["Ana Lopez"]

    paged = _data(client.get("/api/patients/search?sortBy=name&sortOrder=asc&page=2&limit=2"))
    assert [p["name"] for p in paged["patients"]] == ["Cara Diaz"]
    assert paged["pagination"] == {"page": 2, "limit": 2, "total": 1}


def test_search_rejects_unknown_sort_field(client):
    assert client.get("/api/patients/search?sortBy=password").status_code == 400


def test_analytics(client, make_patient, make_therapist):
    therapist = make_therapist()
    make_patient(age=16, gender="Male", flags=["risk"], assignedTherapist=therapist["id"])
    make_patient(age=40, gender=None, isProfileComplete=False)
    client.post("/api/patients", json={"name": "Fresh", "email": "fresh@example.com", "age": 70, "gender": "Female"})

    data = _data(client.get("/api/patients/analytics"))

    assert data["totalPatients"] == 3
    assert data["profileCompletion"] == {"complete": 2, "incomplete": 1}
    assert data["genderDistribution"] == {"Male": 1, "Not specified": 1, "Female": 1}
    assert data["ageGroups"] == {"Under 18": 1, "30-49": 1, "65+": 1}
    assert data["flaggedPatients"] == 1
    assert data["assignedTherapists"] == 1
    assert data["recentRegistrations"] == 1


def test_professional_can_read_but_not_write(client, login, make_patient):
    login("professional")
    patient = make_patient()

    assert client.get("/api/patients").status_code == 200
    assert client.get("/api/patients/summary").status_code == 200
    assert client.get("/api/patients/analytics").status_code == 403
    assert client.delete(f"/api/patients/{patient['id']}").status_code == 403
