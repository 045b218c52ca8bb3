from unittest.mock import MagicMock

import pytest
import requests

from shotpipe.pipeline.errors import (
    AuthorizationError,
    ContentRejectedError,
    GenerationError,
    ServiceOverloadedError,
)
from shotpipe.utils.generation_client import GenerationGatewayClient, error_for_status, with_retries


def _mock_resp(data, status=200):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = data
    resp.text = "ok"
    return resp


def _client(*responses, api_key="key"):
    session = MagicMock()
    session.request.side_effect = list(responses)
    sleeps = []
    client = GenerationGatewayClient(api_key, "https://gw.example.com/", session=session, sleep=sleeps.append)
    return client, session, sleeps


@pytest.mark.parametrize(
    "status,expected",
    [
        (400, ContentRejectedError),
        (401, AuthorizationError),
        (403, AuthorizationError),
        (429, ServiceOverloadedError),
        (500, ServiceOverloadedError),
        (503, ServiceOverloadedError),
        (404, GenerationError),
    ],
)
def test_error_for_status(status, expected):
    err = error_for_status(status, "detail")
    assert type(err) is expected


def test_generate_content_posts_with_bearer_token():
    client, session, _ = _client(_mock_resp({"candidates": []}))
    assert client.generate_content("/v1beta/models/m:generateContent", {"a": 1}) == {"candidates": []}
    method, url = session.request.call_args.args
    assert method == "POST"
    assert url == "https://gw.example.com/v1beta/models/m:generateContent"
    assert session.request.call_args.kwargs["headers"]["Authorization"] == "Bearer key"
    assert session.request.call_args.kwargs["json"] == {"a": 1}


def test_missing_key_is_authorization_error():
    client, session, _ = _client(api_key="")
    with pytest.raises(AuthorizationError):
        client.generate_content("/x", {})
    session.request.assert_not_called()


def test_error_body_message_is_surfaced():
    client, _, _ = _client(_mock_resp({"error": {"message": "prompt blocked"}}, status=400))
    with pytest.raises(ContentRejectedError, match="prompt blocked"):
        client.generate_content("/x", {})


def test_timeout_maps_to_overloaded():
    client, _, _ = _client(requests.Timeout("slow"))
    with pytest.raises(ServiceOverloadedError):
        client.generate_content("/x", {})


def test_connection_error_maps_to_generation_error():
    client, _, _ = _client(requests.ConnectionError("down"))
    with pytest.raises(GenerationError) as info:
        client.generate_content("/x", {})
    assert not isinstance(info.value, ServiceOverloadedError)


def test_submit_requires_task_id():
    client, _, _ = _client(_mock_resp({"id": "task-1"}), _mock_resp({"status": "queued"}))
    assert client.submit_video("/v1/videos", {})["id"] == "task-1"
    with pytest.raises(GenerationError):
        client.submit_video("/v1/videos", {})


def test_poll_until_completed():
    client, session, sleeps = _client(
        _mock_resp({"status": "queued"}),
        _mock_resp({"status": "processing"}),
        _mock_resp({"status": "completed", "video_url": "https://cdn/v.mp4"}),
    )
    data = client.poll_video("/v1/videos/{task_id}", "task-1", timeout_sec=60, poll_interval_sec=5)
    assert data["video_url"] == "https://cdn/v.mp4"
    assert sleeps == [5, 5]
    assert session.request.call_args.args == ("GET", "https://gw.example.com/v1/videos/task-1")


def test_poll_failed_task_raises():
    client, _, _ = _client(_mock_resp({"status": "failed", "error": "moderation"}))
    with pytest.raises(GenerationError, match="moderation"):
        client.poll_video("/v1/videos/{task_id}", "t", timeout_sec=60)


def test_with_retries_retries_only_overload():
    calls = []
    sleeps = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ServiceOverloadedError("busy", 503)
        return "ok"

    assert with_retries(flaky, max_retries=2, retry_delay_sec=2, sleep=sleeps.append) == "ok"
    assert sleeps == [2, 4]

    def rejected():
        raise ContentRejectedError("no", 400)

    with pytest.raises(ContentRejectedError):
        with_retries(rejected, sleep=sleeps.append)
    assert sleeps == [2, 4]


def test_with_retries_gives_up():
    sleeps = []

    def always_busy():
        raise ServiceOverloadedError("busy", 503)

    with pytest.raises(ServiceOverloadedError):
        with_retries(always_busy, max_retries=1, retry_delay_sec=1, sleep=sleeps.append)
    assert sleeps == [1]
