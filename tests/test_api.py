from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from unittest.mock import Mock

import pytest
import requests

from mod_profile_dl.api import (
    CurseForgeAPI,
    GitHubAPI,
    MalformedResponseError,
    ModrinthAPI,
    MojangAPI,
    NetworkError,
    NotFoundError,
    RateLimitedError,
    parse_retry_after,
)


def _response(status_code=200, json_data=None, headers=None, json_error=None):
    response = Mock()
    response.status_code = status_code
    response.headers = headers or {}
    response.url = "https://api.example.invalid/thing"
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = json_data
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} Error")
    return response


@pytest.fixture
def modrinth():
    api = ModrinthAPI()
    api.min_request_interval = 0
    api.session = Mock()
    return api


def test_get_versions(modrinth):
    modrinth.session.get.return_value = _response(json_data=[{"id": "abc"}])

    assert modrinth.get_versions("sodium") == [{"id": "abc"}]
    url = modrinth.session.get.call_args.args[0]
    assert url == "https://api.modrinth.com/v2/project/sodium/version"


def test_not_found(modrinth):
    modrinth.session.get.return_value = _response(status_code=404)
    with pytest.raises(NotFoundError):
        modrinth.get_versions("missing")


def test_rate_limited_reads_retry_after(modrinth):
    modrinth.session.get.return_value = _response(status_code=429, headers={"Retry-After": "12"})
    with pytest.raises(RateLimitedError) as exc_info:
        modrinth.get_versions("sodium")
    assert exc_info.value.retry_after == 12


def test_server_error_is_network_error(modrinth):
    modrinth.session.get.return_value = _response(status_code=502)
    with pytest.raises(NetworkError):
        modrinth.get_versions("sodium")


def test_connection_error_is_network_error(modrinth):
    modrinth.session.get.side_effect = requests.ConnectionError("refused")
    with pytest.raises(NetworkError):
        modrinth.get_versions("sodium")


def test_invalid_json_is_malformed(modrinth):
    modrinth.session.get.return_value = _response(json_error=ValueError("Expecting value"))
    with pytest.raises(MalformedResponseError):
        modrinth.get_versions("sodium")


def test_unexpected_shape_is_malformed(modrinth):
    modrinth.session.get.return_value = _response(json_data={"error": "nope"})
    with pytest.raises(MalformedResponseError):
        modrinth.get_versions("sodium")


def test_github_exhausted_quota_is_rate_limited():
    api = GitHubAPI()
    api.min_request_interval = 0
    api.session = Mock()
    api.session.get.return_value = _response(
        status_code=403, headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "0"}
    )

    with pytest.raises(RateLimitedError):
        api.get_releases("owner", "repo")


def test_github_token_from_environment(monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_test")
    api = GitHubAPI()
    assert api.session.headers["Authorization"] == "Bearer ghp_test"


def test_curseforge_unwraps_data():
    api = CurseForgeAPI(api_key="key")
    assert api.session.headers["x-api-key"] == "key"
    api.min_request_interval = 0
    api.session = Mock()
    api.session.get.return_value = _response(json_data={"data": [{"id": 1}]})

    assert api.get_files(238222) == [{"id": 1}]


def test_mojang_game_versions():
    api = MojangAPI()
    api.session = Mock()
    api.session.get.return_value = _response(
        json_data={
            "versions": [
                {"id": "24w14a", "type": "snapshot"},
                {"id": "1.20.4", "type": "release"},
            ]
        }
    )

    assert api.get_game_versions() == ["24w14a", "1.20.4"]


def test_curseforge_reads_every_page():
    api = CurseForgeAPI(api_key="key")
    api.min_request_interval = 0
    api.session = Mock()
    recent = [{"id": i, "gameVersions": ["1.20.1"]} for i in range(50)]
    older = [{"id": i, "gameVersions": ["1.16.5"]} for i in range(50, 100)]
    api.session.get.side_effect = [
        _response(json_data={"data": recent, "pagination": {"index": 0, "totalCount": 100}}),
        _response(json_data={"data": older, "pagination": {"index": 50, "totalCount": 100}}),
    ]

    files = api.get_files(238222)

    assert [f["id"] for f in files] == list(range(100))
    indexes = [c.kwargs["params"]["index"] for c in api.session.get.call_args_list]
    assert indexes == [0, 50]


def test_curseforge_stops_on_empty_page_without_total():
    api = CurseForgeAPI(api_key="key")
    api.min_request_interval = 0
    api.session = Mock()
    api.session.get.side_effect = [
        _response(json_data={"data": [{"id": i} for i in range(50)]}),
        _response(json_data={"data": []}),
    ]

    assert len(api.get_files(1)) == 50
    assert api.session.get.call_count == 2


def test_github_reads_every_page():
    api = GitHubAPI()
    api.min_request_interval = 0
    api.session = Mock()
    api.session.get.side_effect = [
        _response(json_data=[{"id": i} for i in range(100)]),
        _response(json_data=[{"id": 100}, {"id": 101}]),
    ]

    releases = api.get_releases("owner", "repo")

    assert len(releases) == 102
    pages = [c.kwargs["params"]["page"] for c in api.session.get.call_args_list]
    assert pages == [1, 2]


def test_rate_limited_with_http_date_retry_after(modrinth):
    modrinth.session.get.return_value = _response(
        status_code=429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}
    )

    with pytest.raises(RateLimitedError) as exc_info:
        modrinth.get_versions("sodium")

    # The date is in the past, so no wait is needed
    assert exc_info.value.retry_after == 0


@pytest.mark.parametrize(
    "value, expected",
    [(None, 60), ("", 60), ("12", 12), (" 7 ", 7), ("soon", 60), ("Wed, 21 Oct 2015 07:28:00 GMT", 0)],
)
def test_parse_retry_after(value, expected):
    assert parse_retry_after(value) == expected


def test_parse_retry_after_future_date():
    when = datetime.now(timezone.utc) + timedelta(seconds=120)
    seconds = parse_retry_after(format_datetime(when, usegmt=True))
    assert 100 <= seconds <= 120
