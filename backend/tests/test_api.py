# backend/tests/test_api.py
#
# HTTP-level tests for the routers. The auth state and the Session Store are
# injected through `app.dependency_overrides`, and the crud layer is mocked,
# so only request handling, guards and status codes are exercised.

import asyncio
import time

import httpx
import pytest
from botocore.exceptions import ClientError
from fastapi import HTTPException
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import FakeSessionStore, make_state
from medremind.crud import now_iso
from medremind.main import app
from medremind.realtime import notification_channel
from medremind.routers.auth import get_session_store
from medremind.security import get_auth_state, get_cognito_user_info

client = TestClient(app)


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


def as_user(role, user_id="user-1"):
    """Bypass Cognito: every request is made by a signed-in user with this role."""
    app.dependency_overrides[get_auth_state] = lambda: make_state(role, user_id)


def as_anonymous():
    app.dependency_overrides[get_auth_state] = lambda: make_state(None, signed_in=False)


# --- Main ---

def test_health_check():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.parametrize("role, location", [
    ("doctor", "/doctor"),
    ("medical_store", "/store"),
    ("patient", "/patient"),
    ("unknown", "/auth"),
])
def test_root_redirects_by_role(role, location):
    as_user(role)
    response = client.get("/", follow_redirects=False)
    assert response.status_code == 307
    assert response.headers["location"] == location


def test_root_anonymous_goes_to_sign_in():
    as_anonymous()
    response = client.get("/", follow_redirects=False)
    assert response.headers["location"] == "/auth"


# --- Auth ---

@pytest.fixture
def roles(mocker):
    mocker.patch("medremind.crud.db_get_user_role", return_value="doctor")
    mocker.patch("medremind.crud.db_get_profile_by_id", return_value={"id": "user-1", "full_name": "Dr. Mehta"})
    return mocker.patch("medremind.crud.db_find_or_create_profile", return_value={})


def test_login_resolves_role_and_navigation(roles):
    app.dependency_overrides[get_session_store] = lambda: FakeSessionStore()

    response = client.post("/auth/login", json={"email": "user-1@example.com", "password": "password"})

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["message"] == "Signed in successfully!"
    assert body["access_token"] == "access"
    assert body["session"]["role"] == "doctor"
    assert body["session"]["home_path"] == "/doctor"
    assert body["session"]["role_label"] == "Doctor"
    assert [item["url"] for item in body["session"]["navigation"]][0] == "/doctor"


def test_login_bad_credentials(roles):
    app.dependency_overrides[get_session_store] = lambda: FakeSessionStore()

    response = client.post("/auth/login", json={"email": "user-1@example.com", "password": "nope"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid login credentials"


@pytest.mark.parametrize("confirmed, message", [
    (True, "Account created!"),
    (False, "Account created! Please check your email to verify your account."),
])
def test_signup(roles, confirmed, message):
    app.dependency_overrides[get_session_store] = lambda: FakeSessionStore(confirmed=confirmed)

    response = client.post("/auth/signup", json={
        "email": "new@example.com",
        "password": "secret1",
        "full_name": "New User",
        "role": "medical_store",
    })

    assert response.status_code == 201, response.text
    assert response.json()["message"] == message
    assert roles.called is confirmed


def test_signup_rejects_short_password():
    response = client.post("/auth/signup", json={
        "email": "new@example.com", "password": "123", "full_name": "New User", "role": "patient",
    })
    assert response.status_code == 422


def test_logout_returns_unauthenticated_session(roles):
    store = FakeSessionStore()
    app.dependency_overrides[get_session_store] = lambda: store

    response = client.post("/auth/logout")

    assert response.status_code == 200
    assert response.json()["status"] == "unauthenticated"
    assert response.json()["home_path"] == "/auth"
    assert store.signed_out is True


def test_read_session():
    as_user("patient")
    body = client.get("/auth/session").json()
    assert body["status"] == "authenticated"
    assert body["home_path"] == "/patient"
    assert len(body["navigation"]) == 4


# --- Role guards ---

@pytest.mark.parametrize("path, role, home", [
    ("/doctor", "patient", "/patient"),
    ("/doctor/history", "medical_store", "/store"),
    ("/store", "doctor", "/doctor"),
    ("/patient/history", "medical_store", "/store"),
])
def test_wrong_role_is_redirected_home(path, role, home):
    as_user(role)
    response = client.get(path, follow_redirects=False)
    assert response.status_code == 307
    assert response.headers["location"] == home


def test_anonymous_is_redirected_to_sign_in():
    as_anonymous()
    response = client.get("/patient", follow_redirects=False)
    assert response.status_code == 307
    assert response.headers["location"] == "/auth"


# --- Doctor ---

def test_doctor_dashboard(mocker):
    as_user("doctor", "doc-1")
    mocker.patch("medremind.crud.db_list_prescriptions_by_doctor", return_value=[
        {"id": "rx-1", "patient_id": "p-1", "created_at": now_iso()},
    ])

    response = client.get("/doctor")

    assert response.status_code == 200
    assert response.json() == {"total": 1, "patients": 1, "recent": 1}


def test_doctor_prescribe(mocker):
    as_user("doctor", "doc-1")
    mocker.patch("medremind.crud.db_get_profile_by_email", side_effect=lambda email: (
        {"id": "p-1"} if email == "asha@example.com" else None
    ))
    create = mocker.patch("medremind.crud.db_create_prescription", return_value={"id": "rx-1"})
    mocker.patch("medremind.crud.db_create_prescription_medicines", return_value=[])
    mocker.patch("medremind.crud.db_create_notification", return_value={})

    response = client.post("/doctor/prescribe", json={
        "patient_email": "asha@example.com",
        "store_email": "gone@example.com",
        "reminders_enabled": True,
        "medicines": [{
            "medicine_name": "Paracetamol",
            "dosage": "500mg",
            "frequency": "twice_daily",
            "duration": "5 days",
            "timing": "after_food",
            "time_of_day": ["morning", "night"],
        }],
    })

    assert response.status_code == 201, response.text
    assert response.json()["prescription_id"] == "rx-1"
    assert len(response.json()["warnings"]) == 1
    create.assert_called_once_with("p-1", "doc-1", None, True)


def test_doctor_prescribe_unknown_patient(mocker):
    as_user("doctor", "doc-1")
    mocker.patch("medremind.crud.db_get_profile_by_email", return_value=None)
    create = mocker.patch("medremind.crud.db_create_prescription")

    response = client.post("/doctor/prescribe", json={
        "patient_email": "nobody@example.com",
        "medicines": [{"medicine_name": "Paracetamol", "dosage": "500mg", "duration": "5 days"}],
    })

    assert response.status_code == 404
    assert response.json()["detail"] == "Patient not found with that email"
    create.assert_not_called()


def test_doctor_history_passes_search(mocker):
    as_user("doctor", "doc-1")
    history = mocker.patch("medremind.views.doctor_prescription_history", return_value=[])

    response = client.get("/doctor/history", params={"search": "asha"})

    assert response.status_code == 200
    history.assert_called_once_with("doc-1", "asha")


# --- Patient ---

def test_patient_track_dose(mocker):
    as_user("patient", "p-1")
    mocker.patch("medremind.crud.db_list_doses_between", return_value=[])
    create = mocker.patch("medremind.crud.db_create_dose_record", return_value={"id": "d-1"})

    response = client.post("/patient/doses", json={"prescription_medicine_id": "m-1", "status": "taken"})

    assert response.status_code == 200, response.text
    assert response.json()["message"] == "Marked as taken"
    assert create.call_args.args[:3] == ("m-1", "p-1", "taken")


def test_patient_add_prescription(mocker):
    as_user("patient", "p-1")
    create = mocker.patch("medremind.crud.db_create_prescription", return_value={"id": "rx-1"})
    mocker.patch("medremind.crud.db_create_prescription_medicines", return_value=[])

    response = client.post("/patient/add", json={
        "medicines": [{"medicine_name": "Vitamin D", "dosage": "1 tab", "duration": "30 days"}],
    })

    assert response.status_code == 201
    assert response.json()["message"] == "Prescription added!"
    create.assert_called_once_with("p-1", None, None, True)


def test_patient_history_remote_failure(mocker):
    as_user("patient", "p-1")
    mocker.patch("medremind.crud.db_list_recent_doses",
                 side_effect=ClientError({"Error": {"Code": "InternalServerError", "Message": "x"}}, "Query"))

    response = client.get("/patient/history")

    assert response.status_code == 500


# --- Medical store ---

def test_store_update_status(mocker):
    as_user("medical_store", "store-1")
    update = mocker.patch("medremind.crud.db_update_store_assignment_status", return_value={"id": "sa-1"})

    response = client.put("/store/assignments/sa-1/status", json={"status": "ready"})

    assert response.status_code == 200
    assert response.json()["message"] == "Status updated to ready"
    update.assert_called_once_with("sa-1", "store-1", "ready")


def test_store_update_status_not_found(mocker):
    as_user("medical_store", "store-1")
    mocker.patch("medremind.crud.db_update_store_assignment_status", return_value=None)

    response = client.put("/store/assignments/sa-404/status", json={"status": "given"})

    assert response.status_code == 404


def test_store_update_status_rejects_unknown_status():
    as_user("medical_store", "store-1")
    response = client.put("/store/assignments/sa-1/status", json={"status": "shipped"})
    assert response.status_code == 422


# --- Notifications ---

def _notification(nid, read=False):
    return {
        "id": nid,
        "user_id": "user-1",
        "title": "New Prescription",
        "message": "You have a new prescription from your doctor",
        "type": "prescription",
        "read": read,
        "created_at": "2026-03-10T08:00:00+00:00",
    }


def test_list_notifications(mocker):
    as_user("patient")
    mocker.patch("medremind.crud.db_list_notifications", return_value=[_notification("n-1"), _notification("n-2", read=True)])

    body = client.get("/notifications").json()

    assert body["unread_count"] == 1
    assert body["badge"] == "1"


def test_notifications_require_session():
    as_anonymous()
    assert client.get("/notifications").status_code == 401


def test_mark_notification_read(mocker):
    as_user("patient")
    mark = mocker.patch("medremind.crud.db_mark_notification_read", return_value=True)

    response = client.post("/notifications/n-1/read")

    assert response.status_code == 204
    mark.assert_called_once_with("n-1", "user-1")


def test_mark_notification_read_not_owned(mocker):
    as_user("patient")
    mocker.patch("medremind.crud.db_mark_notification_read", return_value=False)

    assert client.post("/notifications/n-other/read").status_code == 404


def test_mark_all_notifications_read(mocker):
    as_user("patient")
    mark_all = mocker.patch("medremind.crud.db_mark_all_notifications_read", return_value=3)

    assert client.post("/notifications/read-all").status_code == 204
    mark_all.assert_called_once_with("user-1")


def test_notification_socket_rejects_bad_token(mocker):
    mocker.patch("medremind.routers.notifications.verify_cognito_token",
                 side_effect=HTTPException(status_code=401, detail="Could not validate credentials"))

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/notifications/ws?token=bad"):
            pass


def test_notification_socket_feed_push_and_mark_all(mocker):
    mocker.patch("medremind.routers.notifications.verify_cognito_token", return_value={"sub": "user-1"})
    mocker.patch("medremind.crud.db_list_notifications", return_value=[_notification("n-1")])
    mark_all = mocker.patch("medremind.crud.db_mark_all_notifications_read", return_value=1)

    with client.websocket_connect("/notifications/ws?token=good") as ws:
        initial = ws.receive_json()
        assert initial["event"] == "feed"
        assert initial["unread_count"] == 1
        assert ws.receive_json() == {"event": "permission_request"}

        notification_channel.publish("Notifications", _notification("n-2"))
        pushed = ws.receive_json()
        assert pushed["event"] == "insert"
        assert pushed["notification"]["id"] == "n-2"
        assert pushed["badge"] == "2"

        ws.send_json({"action": "mark_all_read"})
        feed = ws.receive_json()
        assert feed["unread_count"] == 0
        assert feed["badge"] is None

    mark_all.assert_called_once_with("user-1")
    assert notification_channel.subscriber_count == 0


def test_notification_socket_mirrors_pushes_once_permission_granted(mocker):
    mocker.patch("medremind.routers.notifications.verify_cognito_token", return_value={"sub": "user-1"})
    mocker.patch("medremind.crud.db_list_notifications", return_value=[])

    with client.websocket_connect("/notifications/ws?token=good") as ws:
        assert ws.receive_json()["event"] == "feed"
        assert ws.receive_json() == {"event": "permission_request"}

        ws.send_json({"action": "permission", "permission": "granted"})
        assert ws.receive_json() == {"event": "permission", "permission": "granted"}

        notification_channel.publish("Notifications", _notification("n-2"))
        assert ws.receive_json() == {
            "event": "local_notification",
            "title": "New Prescription",
            "body": "You have a new prescription from your doctor",
        }
        pushed = ws.receive_json()
        assert pushed["event"] == "insert"
        assert pushed["badge"] == "1"


def test_notification_socket_denied_permission_pushes_only_inserts(mocker):
    mocker.patch("medremind.routers.notifications.verify_cognito_token", return_value={"sub": "user-1"})
    mocker.patch("medremind.crud.db_list_notifications", return_value=[])

    with client.websocket_connect("/notifications/ws?token=good") as ws:
        ws.receive_json()
        ws.receive_json()
        ws.send_json({"action": "permission", "permission": "denied"})
        assert ws.receive_json()["permission"] == "denied"

        notification_channel.publish("Notifications", _notification("n-2"))
        assert ws.receive_json()["event"] == "insert"


def test_notification_socket_closes_when_feed_cannot_load(mocker):
    mocker.patch("medremind.routers.notifications.verify_cognito_token", return_value={"sub": "user-1"})
    mocker.patch("medremind.crud.db_list_notifications",
                 side_effect=ClientError({"Error": {"Code": "InternalServerError", "Message": "x"}}, "Query"))

    with client.websocket_connect("/notifications/ws?token=good") as ws:
        with pytest.raises(WebSocketDisconnect) as excinfo:
            ws.receive_json()

    assert excinfo.value.code == 1011
    assert notification_channel.subscriber_count == 0


# --- Concurrency ---

def _slow(result, seconds=0.5):
    def call(*args, **kwargs):
        time.sleep(seconds)
        return result
    return call


async def _timed_get(http, path, delay=0.0):
    await asyncio.sleep(delay)
    started = time.perf_counter()
    response = await http.get(path)
    return response, time.perf_counter() - started


async def _health_while_loading(path):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        return await asyncio.gather(_timed_get(http, path), _timed_get(http, "/health", delay=0.05))


@pytest.mark.asyncio
async def test_slow_database_call_does_not_stall_other_requests(mocker):
    as_user("doctor", "doc-1")
    mocker.patch("medremind.crud.db_list_prescriptions_by_doctor", side_effect=_slow([]))

    (slow, slow_elapsed), (health, health_elapsed) = await _health_while_loading("/doctor")

    assert slow.status_code == 200
    assert slow_elapsed >= 0.5
    assert health.status_code == 200
    assert health_elapsed < 0.3


@pytest.mark.asyncio
async def test_slow_role_lookup_does_not_stall_other_requests(mocker):
    app.dependency_overrides[get_cognito_user_info] = lambda: {"sub": "user-1"}
    mocker.patch("medremind.security.resolve_auth_state", side_effect=_slow(make_state("patient")))

    (slow, slow_elapsed), (health, health_elapsed) = await _health_while_loading("/auth/session")

    assert slow.json()["home_path"] == "/patient"
    assert slow_elapsed >= 0.5
    assert health.status_code == 200
    assert health_elapsed < 0.3
