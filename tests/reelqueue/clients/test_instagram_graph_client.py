from unittest.mock import MagicMock, call

import pytest
import requests

from reelqueue.clients.instagram_graph import InstagramGraphClient, PublishResult
from reelqueue.config import InstagramConfig
from reelqueue.errors import ConfigurationError, RemoteApiError, RemoteTimeoutError

GRAPH = "https://graph.facebook.com/v19.0"


@pytest.fixture
def http():
    return MagicMock()


@pytest.fixture
def sleep():
    return MagicMock()


@pytest.fixture
def client(http, sleep):
    config = InstagramConfig(user_id="1784", access_token="token")
    return InstagramGraphClient(config, http=http, sleep=sleep)


def test_publish_runs_three_step_protocol(client, http, sleep, fake_response):
    http.request.side_effect = [
        fake_response(200, {"id": "c-1"}),
        fake_response(200, {"status_code": "IN_PROGRESS"}),
        fake_response(200, {"status_code": "FINISHED"}),
        fake_response(200, {"id": "m-1"}),
    ]

    result = client.publish("https://cdn.example.com/a.mp4", "Hello #reels")

    assert result == PublishResult(container_id="c-1", media_id="m-1")
    assert http.request.call_args_list == [
        call(
            "POST",
            f"{GRAPH}/1784/media",
            timeout=30.0,
            data={
                "access_token": "token",
                "video_url": "https://cdn.example.com/a.mp4",
                "share_to_feed": "true",
                "media_type": "REELS",
                "caption": "Hello #reels",
            },
        ),
        call(
            "GET",
            f"{GRAPH}/c-1",
            timeout=30.0,
            params={"access_token": "token", "fields": "status_code,status"},
        ),
        call(
            "GET",
            f"{GRAPH}/c-1",
            timeout=30.0,
            params={"access_token": "token", "fields": "status_code,status"},
        ),
        call(
            "POST",
            f"{GRAPH}/1784/media_publish",
            timeout=30.0,
            data={"access_token": "token", "creation_id": "c-1"},
        ),
    ]
    sleep.assert_called_once_with(5.0)


def test_caption_omitted_when_empty(client, http, fake_response):
    http.request.side_effect = [
        fake_response(200, {"id": "c-1"}),
        fake_response(200, {"status_code": "FINISHED"}),
        fake_response(200, {"id": "m-1"}),
    ]

    client.publish("https://cdn.example.com/a.mp4")

    create_data = http.request.call_args_list[0].kwargs["data"]
    assert "caption" not in create_data


@pytest.mark.parametrize("user_id,token,missing", [
    (None, "token", "IG_USER_ID"),
    ("1784", None, "IG_ACCESS_TOKEN"),
])
def test_missing_config_fails_before_network(http, user_id, token, missing):
    client = InstagramGraphClient(InstagramConfig(user_id=user_id, access_token=token), http=http)

    with pytest.raises(ConfigurationError) as exc:
        client.publish("https://cdn.example.com/a.mp4")

    assert missing in str(exc.value)
    http.request.assert_not_called()


def test_create_error_uses_remote_message(client, http, fake_response):
    http.request.return_value = fake_response(400, {"error": {"message": "Invalid parameter"}})

    with pytest.raises(RemoteApiError) as exc:
        client.publish("https://cdn.example.com/a.mp4")

    assert str(exc.value) == "Invalid parameter"
    assert exc.value.status_code == 400
    assert http.request.call_count == 1


def test_create_error_without_body_uses_status(client, http, fake_response):
    http.request.return_value = fake_response(502, None)

    with pytest.raises(RemoteApiError) as exc:
        client.publish("https://cdn.example.com/a.mp4")

    assert str(exc.value) == "Failed to create media container (status 502)"


def test_create_without_container_id(client, http, fake_response):
    http.request.return_value = fake_response(200, {})

    with pytest.raises(RemoteApiError) as exc:
        client.publish("https://cdn.example.com/a.mp4")

    assert "container id" in str(exc.value)


def test_transport_error_is_remote_error(client, http):
    http.request.side_effect = requests.ConnectionError("connection reset")

    with pytest.raises(RemoteApiError) as exc:
        client.publish("https://cdn.example.com/a.mp4")

    assert "Failed to create media container" in str(exc.value)


def test_poll_error_status_fails_immediately(client, http, sleep, fake_response):
    http.request.side_effect = [
        fake_response(200, {"id": "c-1"}),
        fake_response(200, {"status_code": "ERROR", "status": {"description": "Unsupported codec"}}),
    ]

    with pytest.raises(RemoteApiError) as exc:
        client.publish("https://cdn.example.com/a.mp4")

    assert str(exc.value) == "Unsupported codec"
    assert not isinstance(exc.value, RemoteTimeoutError)
    sleep.assert_not_called()
    assert http.request.call_count == 2


def test_poll_http_failure(client, http, fake_response):
    http.request.side_effect = [
        fake_response(200, {"id": "c-1"}),
        fake_response(500, {"error": {"message": "Service temporarily unavailable"}}),
    ]

    with pytest.raises(RemoteApiError) as exc:
        client.publish("https://cdn.example.com/a.mp4")

    assert str(exc.value) == "Service temporarily unavailable"


def test_poll_gives_up_after_max_attempts(http, sleep, fake_response):
    config = InstagramConfig(user_id="1784", access_token="token", max_poll_attempts=3, poll_interval_seconds=2)
    client = InstagramGraphClient(config, http=http, sleep=sleep)
    http.request.side_effect = [fake_response(200, {"id": "c-1"})] + [
        fake_response(200, {"status_code": "IN_PROGRESS"})
    ] * 3

    with pytest.raises(RemoteTimeoutError) as exc:
        client.publish("https://cdn.example.com/a.mp4")

    assert "Timed out" in str(exc.value)
    assert sleep.call_args_list == [call(2), call(2), call(2)]
    assert http.request.call_count == 4


def test_publish_without_media_id(client, http, fake_response):
    http.request.side_effect = [
        fake_response(200, {"id": "c-1"}),
        fake_response(200, {"status_code": "FINISHED"}),
        fake_response(200, {"success": True}),
    ]

    with pytest.raises(RemoteApiError) as exc:
        client.publish("https://cdn.example.com/a.mp4")

    assert "media id" in str(exc.value)
