"""Tests for the Directus REST client (HTTP session mocked)."""

import json
from unittest.mock import MagicMock

import pytest
import requests

from dxmigrate.errors import ConnectivityError, FetchError, RemoteWriteError
from dxmigrate.models.config import ConnectionConfig
from dxmigrate.transport.directus import DirectusClient, get_transport


def make_response(status=200, payload=None, reason="OK"):
    response = MagicMock()
    response.status_code = status
    response.ok = status < 400
    response.reason = reason
    response.content = b"" if payload is None else json.dumps(payload).encode()
    response.json.return_value = payload
    return response


def make_client(*responses, token="abc"):
    session = MagicMock()
    session.request.side_effect = list(responses)
    return DirectusClient("http://directus.local/", token=token, session=session), session


def test_list_unwraps_data_envelope_and_encodes_params():
    client, session = make_client(make_response(payload={"data": [{"id": 1}, {"id": 2}]}))

    records = client.list("articles", {"filter": {"status": {"_eq": "published"}}})

    assert records == [{"id": 1}, {"id": 2}]
    args, kwargs = session.request.call_args
    assert args == ("GET", "http://directus.local/items/articles")
    assert kwargs["params"] == {"limit": "-1", "filter": '{"status": {"_eq": "published"}}'}
    assert kwargs["headers"]["Authorization"] == "Bearer abc"


def test_system_types_use_their_own_endpoints():
    client, session = make_client(make_response(payload={"data": []}))

    assert client.list("roles") == []
    assert session.request.call_args[0][1] == "http://directus.local/roles"


def test_bearer_prefix_is_not_doubled():
    client, _ = make_client(token="Bearer xyz")
    assert client.token == "xyz"


def test_update_patches_record_url():
    client, session = make_client(make_response(payload={"data": {"id": "r1", "name": "Editors"}}))

    record = client.update("roles", "r1", {"name": "Editors"})

    assert record == {"id": "r1", "name": "Editors"}
    args, kwargs = session.request.call_args
    assert args == ("PATCH", "http://directus.local/roles/r1")
    assert kwargs["json"] == {"name": "Editors"}


def test_no_content_response_returns_empty_record():
    client, _ = make_client(make_response(status=204))
    assert client.create("articles", {"title": "x"}) == {}


def test_rejected_write_raises_with_remote_message():
    client, _ = make_client(
        make_response(status=400, payload={"errors": [{"message": "Invalid payload. \"name\" is required."}]}, reason="Bad Request")
    )

    with pytest.raises(RemoteWriteError) as exc:
        client.create("roles", {})

    assert exc.value.status == 400
    assert exc.value.message == 'Invalid payload. "name" is required.'


def test_rejected_read_is_a_fetch_error():
    client, _ = make_client(make_response(status=403, payload={"errors": [{"message": "Forbidden"}]}))

    with pytest.raises(FetchError):
        client.list("policies")


def test_fetch_captures_read_errors():
    client, _ = make_client(make_response(status=403, payload={"errors": [{"message": "Forbidden"}]}))

    result = client.fetch("access")

    assert not result.success
    assert result.error == "Forbidden"
    assert result.status == 403


def test_unauthorized_is_connectivity_error():
    client, _ = make_client(make_response(status=401, payload={"errors": [{"message": "Invalid token"}]}))

    with pytest.raises(ConnectivityError):
        client.list("roles")


def test_network_failure_is_connectivity_error():
    client, session = make_client()
    session.request.side_effect = requests.ConnectionError("connection refused")

    with pytest.raises(ConnectivityError, match="unreachable"):
        client.create("roles", {"name": "x"})


def test_import_file_posts_url_and_metadata():
    client, session = make_client(make_response(payload={"data": {"id": "file1"}}))

    record = client.import_file("http://source/assets/file1", {"id": "file1", "title": "Cover"})

    assert record == {"id": "file1"}
    args, kwargs = session.request.call_args
    assert args == ("POST", "http://directus.local/files/import")
    assert kwargs["json"] == {"url": "http://source/assets/file1", "data": {"id": "file1", "title": "Cover"}}


def test_check_connection_failure():
    client, _ = make_client(make_response(status=503, payload={"errors": [{"message": "Service Unavailable"}]}))

    with pytest.raises(ConnectivityError, match="Service Unavailable"):
        client.check_connection()


def test_login_exchanges_credentials_for_token():
    session = MagicMock()
    session.request.return_value = make_response(payload={"data": {"access_token": "tok", "expires": 900000}})

    client = DirectusClient.login("http://directus.local", "admin@example.com", "secret", session=session)

    assert client.token == "tok"
    args, kwargs = session.request.call_args
    assert args == ("POST", "http://directus.local/auth/login")
    assert kwargs["json"] == {"email": "admin@example.com", "password": "secret"}
    assert "Authorization" not in kwargs["headers"]


def test_login_rejected():
    session = MagicMock()
    session.request.return_value = make_response(
        status=400, payload={"errors": [{"message": "Invalid user credentials."}]}
    )

    with pytest.raises(ConnectivityError, match="Login failed"):
        DirectusClient.login("http://directus.local", "admin@example.com", "wrong", session=session)


def test_get_transport_with_token():
    client = get_transport(ConnectionConfig(url="http://directus.local/", token="abc"))

    assert isinstance(client, DirectusClient)
    assert client.url == "http://directus.local"
    assert client.asset_url("file1") == "http://directus.local/assets/file1"


def test_transport_without_file_import_cannot_be_built():
    from dxmigrate.transport.base import Transport

    class ReadWriteOnly(Transport):
        def list(self, entity_type, params=None):
            return []

        def create(self, entity_type, body):
            return body

        def update(self, entity_type, record_id, body):
            return body

    with pytest.raises(TypeError):
        ReadWriteOnly()
