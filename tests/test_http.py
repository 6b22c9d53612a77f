from unittest.mock import patch

import httpx
import pytest

from aggregate_pull.exceptions import HttpError
from aggregate_pull.http import Http, Request
from aggregate_pull.jobs import RunnerStatus


def _http(handler, **kwargs) -> Http:
    return Http(transport=httpx.MockTransport(handler), backoff_factor=0, **kwargs)


class TestExecute:
    def test_text_body(self) -> None:
        http = _http(lambda request: httpx.Response(200, text="<h:html/>"))

        response = http.execute(Request.get("http://x/formXml", [("formId", "a")]))

        assert response.is_success()
        assert response.get() == "<h:html/>"

    def test_sends_query_and_openrosa_header(self) -> None:
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            seen["header"] = request.headers.get("X-OpenRosa-Version")
            return httpx.Response(200, text="")

        _http(handler).execute(Request.get("http://x/formXml", [("formId", "a b")]))

        assert seen == {"params": {"formId": "a b"}, "header": "1.0"}

    def test_xml_body_goes_through_mapper(self) -> None:
        http = _http(lambda request: httpx.Response(200, text="<forms><form/><form/></forms>"))

        response = http.execute(Request.get("http://x/list").as_xml().with_mapper(len))

        assert response.get() == 2

    def test_not_found_is_a_failure(self) -> None:
        http = _http(lambda request: httpx.Response(404))

        response = http.execute(Request.get("http://x/missing"))

        assert not response.is_success()
        assert response.is_not_found()
        assert response.or_else("default") == "default"
        with pytest.raises(HttpError):
            response.get()

    def test_unauthorized(self) -> None:
        response = _http(lambda request: httpx.Response(401)).execute(Request.get("http://x/formList"))

        assert response.is_unauthorized()

    def test_malformed_xml_is_a_failure_without_retry(self) -> None:
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, text="<broken")

        response = _http(handler, max_retries=3).execute(Request.get("http://x/list").as_xml())

        assert not response.is_success()
        assert "Malformed response" in response.reason
        assert len(calls) == 1

    def test_retries_server_errors(self) -> None:
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503) if len(calls) < 3 else httpx.Response(200, text="ok")

        with patch("aggregate_pull.http.time.sleep") as mock_sleep:
            response = _http(handler, max_retries=3).execute(Request.get("http://x/formXml"))

        assert response.get() == "ok"
        assert len(calls) == 3
        assert mock_sleep.call_count == 2

    def test_no_retries_once_cancelled(self) -> None:
        calls = []
        status = RunnerStatus()

        def handler(request):
            calls.append(request)
            status.cancel()
            return httpx.Response(503)

        with patch("aggregate_pull.http.time.sleep") as mock_sleep:
            response = _http(handler, max_retries=3).execute(Request.get("http://x/formXml"), status)

        assert response.status_code == 503
        assert len(calls) == 1
        mock_sleep.assert_not_called()

    def test_transport_error_is_a_failure(self) -> None:
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with patch("aggregate_pull.http.time.sleep"):
            response = _http(handler, max_retries=2).execute(Request.get("http://x/formXml"))

        assert not response.is_success()
        assert response.status_code == 0
        assert "ConnectError" in response.reason


class TestDownload:
    def test_streams_to_target(self, tmp_path) -> None:
        target = tmp_path / "media" / "photo.jpg"
        http = _http(lambda request: httpx.Response(200, content=b"\x89PNG data"))

        response = http.execute(Request.get("http://x/photo.jpg").download_to(str(target)))

        assert response.is_success()
        assert target.read_bytes() == b"\x89PNG data"
        assert not (tmp_path / "media" / "photo.jpg.part").exists()

    def test_failed_download_leaves_no_file(self, tmp_path) -> None:
        target = tmp_path / "photo.jpg"
        http = _http(lambda request: httpx.Response(404))

        response = http.execute(Request.get("http://x/photo.jpg").download_to(str(target)))

        assert not response.is_success()
        assert not target.exists()
