"""End-to-end flows over the HTTP surface with the in-memory backends."""

import pytest
from fastapi.testclient import TestClient

from medialist import app as app_module
from medialist.service.runtime import get_runtime


@pytest.fixture
def client():
    return TestClient(app_module.app)


def _register(client, username="alice", email="alice@x.com", password="secret1", **extra):
    body = {
        "name": "Alice Example",
        "username": username,
        "email": email,
        "password": password,
        "profileType": "public",
    }
    body.update(extra)
    return client.post("/v1/auth/register", json=body)


def _login(client, email="alice@x.com", password="secret1"):
    response = client.post("/v1/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.json()


def _auth(tokens):
    return {"Authorization": f"Bearer {tokens['accessToken']}"}


def _item(media_id, **fields):
    body = {
        "mediaId": media_id,
        "title": f"Title {media_id}",
        "information": {"createdAt": "2023-01-01", "posterImage": "/poster.jpg"},
    }
    body.update(fields)
    return body


@pytest.fixture
def session(client):
    assert _register(client).status_code == 200
    return _login(client)


class TestAuthFlow:
    def test_register_returns_public_profile(self, client):
        response = _register(client)
        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "User created successfully"
        assert body["result"]["username"] == "alice"
        assert "password" not in body["result"]
        assert "password_hash" not in body["result"]

    def test_duplicate_username(self, client):
        _register(client)
        response = _register(client, email="other@x.com")
        assert response.status_code == 400
        assert response.json()["message"] == "username already exists"

    def test_login_by_username(self, client):
        _register(client)
        response = client.post(
            "/v1/auth/login", json={"username": "alice", "password": "secret1"}
        )
        assert response.status_code == 200
        assert response.json()["message"] == "Login successful"

    def test_login_needs_exactly_one_identifier(self, client):
        _register(client)
        response = client.post(
            "/v1/auth/login",
            json={"username": "alice", "email": "alice@x.com", "password": "secret1"},
        )
        assert response.status_code == 400

    def test_login_wrong_password(self, client):
        _register(client)
        response = client.post(
            "/v1/auth/login", json={"email": "alice@x.com", "password": "wrong-pw"}
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid password"

    def test_login_unknown_user(self, client):
        response = client.post(
            "/v1/auth/login", json={"email": "ghost@x.com", "password": "secret1"}
        )
        assert response.status_code == 404
        assert response.json()["message"] == "User not found"

    def test_refresh(self, client, session):
        """The refreshed access token authenticates follow-up requests."""
        response = client.post(
            "/v1/auth/refresh",
            json={"refreshToken": session["refreshToken"]},
            headers=_auth(session),
        )
        assert response.status_code == 200
        new_token = response.json()["accessToken"]
        profile = client.get("/v1/user/", headers={"Authorization": f"Bearer {new_token}"})
        assert profile.status_code == 200

    def test_refresh_without_token_is_403(self, client, session):
        response = client.post("/v1/auth/refresh", json={}, headers=_auth(session))
        assert response.status_code == 403
        assert response.json()["message"] == '"refreshToken" is required'

    def test_refresh_requires_authentication(self, client, session):
        response = client.post(
            "/v1/auth/refresh", json={"refreshToken": session["refreshToken"]}
        )
        assert response.status_code == 403

    def test_logout(self, client, session):
        response = client.post("/v1/auth/logout", headers=_auth(session))
        assert response.status_code == 200
        after = client.get("/v1/user/", headers=_auth(session))
        assert after.status_code == 400
        assert after.json()["message"] == "Invalid token. User does not exist"


class TestUserRoutes:
    def test_profile(self, client, session):
        response = client.get("/v1/user/", headers=_auth(session))
        assert response.status_code == 200
        assert response.json()["result"]["email"] == "alice@x.com"

    def test_search_by_name(self, client, session):
        _register(client, username="bobby", email="bob@x.com", name="Bobby Tables")
        response = client.get("/v1/user/search/tables?type=name", headers=_auth(session))
        assert response.status_code == 200
        assert [u["username"] for u in response.json()["result"]] == ["bobby"]

    def test_search_invalid_type(self, client, session):
        response = client.get("/v1/user/search/alice?type=email", headers=_auth(session))
        assert response.status_code == 400

    def test_update_named_field(self, client, session):
        response = client.put(
            "/v1/user/update",
            json={"updateField": "name", "name": "Alice Renamed"},
            headers=_auth(session),
        )
        assert response.status_code == 200
        assert response.json()["message"] == "User updated successfully"
        assert response.json()["result"]["name"] == "Alice Renamed"

    def test_update_named_field_missing(self, client, session):
        """The field named by updateField becomes required."""
        response = client.put(
            "/v1/user/update",
            json={"updateField": "email", "name": "Alice Renamed"},
            headers=_auth(session),
        )
        assert response.status_code == 400
        assert response.json()["message"] == '"email" is required'

    def test_update_only_applies_named_field(self, client, session):
        response = client.put(
            "/v1/user/update",
            json={"updateField": "name", "name": "Alice Renamed", "profileType": "private"},
            headers=_auth(session),
        )
        assert response.json()["result"]["profileType"] == "public"

    def test_update_password_revokes_session(self, client, session):
        response = client.put(
            "/v1/user/updatePassword",
            json={"oldPassword": "secret1", "newPassword": "newpass1"},
            headers=_auth(session),
        )
        assert response.status_code == 200
        assert response.json()["message"] == "Password updated successfully"
        assert client.get("/v1/user/", headers=_auth(session)).status_code == 400
        _login(client, password="newpass1")

    def test_update_password_wrong_old(self, client, session):
        response = client.put(
            "/v1/user/updatePassword",
            json={"oldPassword": "nope-nope", "newPassword": "newpass1"},
            headers=_auth(session),
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Old password is incorrect"

    def test_tags(self, client, session):
        headers = _auth(session)
        added = client.put("/v1/user/tag?queryType=add", json={"tag": "finished"}, headers=headers)
        assert added.status_code == 200
        assert added.json() == {"message": "Tag added successfully", "tags": ["finished"]}
        client.put("/v1/user/tag?queryType=add", json={"tag": "loved"}, headers=headers)
        found = client.get("/v1/user/tags?search=FIN", headers=headers)
        assert found.json()["tags"] == ["finished"]
        removed = client.put(
            "/v1/user/tag?queryType=remove", json={"tag": "finished"}, headers=headers
        )
        assert removed.json()["tags"] == ["loved"]
        assert client.get("/v1/user/tags", headers=headers).json()["tags"] == ["loved"]

    def test_tag_bad_query_type(self, client, session):
        response = client.put(
            "/v1/user/tag?queryType=find", json={"tag": "x"}, headers=_auth(session)
        )
        assert response.status_code == 400

    def test_delete_account(self, client, session):
        headers = _auth(session)
        client.post("/v1/list", json={"privacy": "public", "type": "statusBased"}, headers=headers)
        response = client.request(
            "DELETE", "/v1/user/", json={"password": "secret1"}, headers=headers
        )
        assert response.status_code == 200
        assert response.json()["result"] == {"listsRemoved": 1}
        assert get_runtime().store.lists == {}
        assert client.get("/v1/user/", headers=headers).status_code == 400

    def test_delete_account_wrong_password(self, client, session):
        response = client.request(
            "DELETE", "/v1/user/", json={"password": "wrong-pw"}, headers=_auth(session)
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Password is incorrect"


class TestListRoutes:
    def test_watchlist_scenario(self, client, session):
        """Create, read, delete, then read again fails."""
        headers = _auth(session)
        created = client.post(
            "/v1/list",
            json={"privacy": "public", "type": "statusBased", "name": "Watchlist"},
            headers=headers,
        )
        assert created.status_code == 200
        assert created.json()["message"] == "List created successfully"
        list_id = created.json()["result"]["id"]

        fetched = client.get(f"/v1/list/{list_id}?type=statusBased", headers=headers)
        assert fetched.status_code == 200
        assert fetched.json()["result"] == created.json()["result"]

        index = client.get("/v1/user/lists?type=statusBased", headers=headers)
        assert index.json()["result"] == {"statusBased": [list_id]}

        deleted = client.delete(f"/v1/list/{list_id}?type=statusBased", headers=headers)
        assert deleted.status_code == 200
        assert deleted.json()["message"] == "List deleted successfully"

        again = client.get(f"/v1/list/{list_id}?type=statusBased", headers=headers)
        assert again.status_code in (400, 404)

    def test_invalid_list_type(self, client, session):
        response = client.post(
            "/v1/list", json={"privacy": "public", "type": "favourites"}, headers=_auth(session)
        )
        assert response.status_code == 400

    def test_other_users_list_is_refused(self, client, session):
        owner_headers = _auth(session)
        list_id = client.post(
            "/v1/list", json={"privacy": "public", "type": "themeBased"}, headers=owner_headers
        ).json()["result"]["id"]
        _register(client, username="bobby", email="bob@x.com")
        intruder = _auth(_login(client, email="bob@x.com"))

        assert client.get(f"/v1/list/{list_id}?type=themeBased", headers=intruder).status_code == 400
        response = client.delete(f"/v1/list/{list_id}?type=themeBased", headers=intruder)
        assert response.status_code == 400
        assert client.get(f"/v1/list/{list_id}?type=themeBased", headers=owner_headers).status_code == 200

    def test_update_privacy_and_name(self, client, session):
        headers = _auth(session)
        list_id = client.post(
            "/v1/list", json={"privacy": "public", "type": "themeBased", "name": "Comfy"},
            headers=headers,
        ).json()["result"]["id"]

        privacy = client.put(
            f"/v1/list/update/{list_id}?updateType=privacy",
            json={"privacy": "private"},
            headers=headers,
        )
        assert privacy.status_code == 200
        assert privacy.json()["message"] == "List privacy updated successfully"

        name = client.put(
            f"/v1/list/update/{list_id}?updateType=name",
            json={"name": "Cozy picks"},
            headers=headers,
        )
        assert name.json()["message"] == "List name updated successfully"
        assert name.json()["result"]["privacy"] == "private"
        assert name.json()["result"]["name"] == "Cozy picks"

    def test_update_requires_named_field(self, client, session):
        headers = _auth(session)
        list_id = client.post(
            "/v1/list", json={"privacy": "public", "type": "themeBased"}, headers=headers
        ).json()["result"]["id"]
        response = client.put(
            f"/v1/list/update/{list_id}?updateType=name",
            json={"privacy": "private"},
            headers=headers,
        )
        assert response.status_code == 400
        assert response.json()["message"] == '"name" is required'

    def test_item_routes(self, client, session):
        headers = _auth(session)
        list_id = client.post(
            "/v1/list",
            json={"privacy": "public", "type": "statusBased", "items": [_item("1")]},
            headers=headers,
        ).json()["result"]["id"]

        added = client.post(
            f"/v1/list/{list_id}/items?type=statusBased",
            json={"items": [_item(2)]},
            headers=headers,
        )
        assert added.status_code == 200
        assert [i["mediaId"] for i in added.json()["result"]["items"]] == ["1", "2"]

        patched = client.put(
            f"/v1/list/{list_id}/items/2?type=statusBased",
            json={"anticipation": 0, "customNotes": "soon"},
            headers=headers,
        )
        assert patched.status_code == 200
        item = patched.json()["result"]["items"][1]
        assert item["anticipation"] == 0
        assert item["customNotes"] == "soon"

        restricted = client.put(
            f"/v1/list/{list_id}/items/2?type=statusBased",
            json={"userRating": 9},
            headers=headers,
        )
        assert restricted.status_code == 400

        removed = client.request(
            "DELETE",
            f"/v1/list/{list_id}/items?type=statusBased",
            json={"mediaIds": ["2"]},
            headers=headers,
        )
        assert removed.status_code == 200
        assert [i["mediaId"] for i in removed.json()["result"]["items"]] == ["1"]

    def test_numeric_media_ids_are_removed_like_strings(self, client, session):
        headers = _auth(session)
        list_id = client.post(
            "/v1/list",
            json={"privacy": "public", "type": "themeBased", "items": [_item(123), _item("7")]},
            headers=headers,
        ).json()["result"]["id"]

        removed = client.request(
            "DELETE",
            f"/v1/list/{list_id}/items?type=themeBased",
            json={"mediaIds": [123]},
            headers=headers,
        )
        assert removed.status_code == 200
        assert [i["mediaId"] for i in removed.json()["result"]["items"]] == ["7"]

    def test_item_missing_required_information(self, client, session):
        response = client.post(
            "/v1/list",
            json={
                "privacy": "public",
                "type": "statusBased",
                "items": [{"mediaId": "1", "information": {"createdAt": "2023"}}],
            },
            headers=_auth(session),
        )
        assert response.status_code == 400

    def test_tag_removal_reaches_items(self, client, session):
        headers = _auth(session)
        client.put("/v1/user/tag?queryType=add", json={"tag": "finished"}, headers=headers)
        list_id = client.post(
            "/v1/list",
            json={
                "privacy": "public",
                "type": "themeBased",
                "items": [_item("1", tags=["finished", "loved"])],
            },
            headers=headers,
        ).json()["result"]["id"]
        client.put("/v1/user/tag?queryType=remove", json={"tag": "finished"}, headers=headers)
        fetched = client.get(f"/v1/list/{list_id}?type=themeBased", headers=headers)
        assert fetched.json()["result"]["items"][0]["tags"] == ["loved"]


class TestHealth:
    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["store"]["status"] == "healthy"
        assert body["checks"]["cache"]["status"] == "healthy"
