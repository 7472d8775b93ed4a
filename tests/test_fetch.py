"""
Tests for the HTTP client.

The requests session and the resolver are mocked; no network access.
"""
import socket
from unittest.mock import Mock, patch

import pytest
import requests

from dwd_common import DownloadError, ResolutionError
from dwd_fetch import HttpClient, resolve_host, substitute_host


def _response(content=b"payload", status=200):
    response = Mock()
    response.content = content
    response.text = content.decode("utf-8")
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} Server Error")
    else:
        response.raise_for_status.return_value = None
    return response


@pytest.fixture
def session():
    mock = Mock(spec=requests.Session)
    mock.headers = {}
    return mock


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def client(session, sleeps):
    return HttpClient(timeout_seconds=5, max_retries=3, retry_delay_seconds=0.01, sleep=sleeps.append, session=session)


class TestDownload:
    def test_returns_content(self, client, session):
        session.get.return_value = _response(b"grib")

        assert client.download("https://10.0.0.1/file.grib2.bz2") == b"grib"
        session.get.assert_called_once_with("https://10.0.0.1/file.grib2.bz2", timeout=5)

    def test_disables_certificate_verification(self, client, session):
        assert session.verify is False

    def test_retries_then_succeeds(self, client, session, sleeps):
        session.get.side_effect = [requests.ConnectionError("reset"), requests.Timeout("slow"), _response(b"ok")]

        assert client.download("https://10.0.0.1/a") == b"ok"
        assert session.get.call_count == 3
        assert sleeps == [0.01, 0.01]

    def test_four_failures_raise_download_error(self, client, session, sleeps):
        """Three additional attempts after the first, then the last error is chained."""
        errors = [requests.ConnectionError(f"reset {i}") for i in range(4)]
        session.get.side_effect = errors

        with pytest.raises(DownloadError) as exc_info:
            client.download("https://10.0.0.1/a")

        assert session.get.call_count == 4
        assert exc_info.value.__cause__ is errors[-1]
        assert exc_info.value.url == "https://10.0.0.1/a"
        assert len(sleeps) == 3

    def test_http_status_errors_are_retried(self, client, session):
        session.get.side_effect = [_response(status=503), _response(b"ok")]

        assert client.download("https://10.0.0.1/a") == b"ok"

    def test_logs_each_failed_attempt(self, client, session, caplog):
        session.get.side_effect = [requests.ConnectionError("reset"), _response(b"ok")]

        with caplog.at_level("WARNING", logger="dwd_fetch"):
            client.download("https://10.0.0.1/a")

        assert "DOWNLOAD_RETRY" in caplog.text
        assert "attempt=1/4" in caplog.text


class TestResolution:
    def test_substitute_host_keeps_path_and_port(self):
        assert substitute_host("https://opendata.dwd.de/weather/poi/", "1.2.3.4") == "https://1.2.3.4/weather/poi/"
        assert substitute_host("http://example.org:8080/a/", "1.2.3.4") == "http://1.2.3.4:8080/a/"

    def test_resolve_base_url_uses_address_and_sets_host_header(self, client, session):
        infos = [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("141.38.2.26", 0))]
        with patch("dwd_fetch.socket.getaddrinfo", return_value=infos):
            url = client.resolve_base_url("https://opendata.dwd.de/weather/weather_reports/poi/")

        assert url == "https://141.38.2.26/weather/weather_reports/poi/"
        assert session.headers["Host"] == "opendata.dwd.de"

    def test_resolution_failure_raises_resolution_error(self):
        with patch("dwd_fetch.socket.getaddrinfo", side_effect=socket.gaierror(-3, "Temporary failure in name resolution")):
            with pytest.raises(ResolutionError):
                resolve_host("opendata.dwd.de")

    def test_url_without_host_is_rejected(self, client):
        with pytest.raises(ResolutionError):
            client.resolve_base_url("file:///tmp/listing")
