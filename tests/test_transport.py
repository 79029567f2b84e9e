"""Tests for transport layer."""

import base64
import gzip
import io
from unittest.mock import MagicMock, call, patch

import httpx
import pytest

from httpbatch import Options, Request, TransportError, UploadFile
from httpbatch.transport import CurlTransport, HttpxTransport, TransportOption as Opt, default_transport
from httpbatch.transport.base import (
    ERROR_BAD_FUNCTION_ARGUMENT,
    ERROR_COULDNT_CONNECT,
    ERROR_RECV,
    ERROR_TIMEOUT,
    ERROR_TOO_MANY_REDIRECTS,
    INFO_FIELDS,
    MULTI_BAD_HANDLE,
    MULTI_OK,
    POLL_ERROR,
    Transfer,
)
from httpbatch.transport.curl_transport import _CURL_INFO, CurlError, CurlInfo, CurlOpt

from conftest import FakeReply, FakeTransport, Script


class TestBaseTransport:
    """Tests for the shared BaseTransport behaviour (via FakeTransport)."""

    def test_execute_returns_body(self):
        """Test a successful execute returns the body."""
        transport = FakeTransport(Script(default=FakeReply(body=b"hello")))
        handle = transport.create()
        transport.set_option(handle, Opt.URL, "https://example.com/")

        assert transport.execute(handle) == b"hello"
        assert transport.errno(handle) == 0
        assert transport.get_info(handle, "http_code") == 200

    def test_failed_execute_returns_none(self):
        """Test a failed execute returns None and records the error."""
        transport = FakeTransport(Script(default=FakeReply(errno=ERROR_COULDNT_CONNECT, error="refused")))
        handle = transport.create()
        transport.set_option(handle, Opt.URL, "https://example.com/")

        assert transport.execute(handle) is None
        assert transport.errno(handle) == ERROR_COULDNT_CONNECT
        assert transport.error_string(handle) == "refused"

    def test_writedata_destination(self):
        """Test bodies are written to a WRITEDATA destination."""
        transport = FakeTransport(Script(default=FakeReply(body=b"data")))
        handle = transport.create()
        destination = io.BytesIO(b"stale contents")
        transport.set_option(handle, Opt.URL, "https://example.com/")
        transport.set_option(handle, Opt.WRITEDATA, destination)

        assert transport.execute(handle) is None
        assert destination.getvalue() == b"data"

    def test_closed_handle_raises(self, fake_transport):
        """Test using a closed handle raises TransportError."""
        handle = fake_transport.create()
        fake_transport.close(handle)

        with pytest.raises(TransportError, match="closed"):
            fake_transport.set_option(handle, Opt.URL, "https://example.com/")
        with pytest.raises(TransportError, match="closed"):
            fake_transport.execute(handle)

    def test_multi_round(self):
        """Test the concurrent variant runs every handle."""
        transport = FakeTransport(Script(default=FakeReply(body=b"ok", delay=0.01)))
        mh = transport.multi_create(2)
        handles = []
        for i in range(2):
            handle = transport.create()
            transport.set_option(handle, Opt.URL, f"https://example.com/{i}")
            transport.multi_add(mh, handle)
            handles.append(handle)

        while True:
            status, active = transport.multi_exec(mh)
            assert status == MULTI_OK
            if not active:
                break
            assert transport.multi_poll(mh, 0.5) == MULTI_OK

        assert [transport.multi_get_result(h) for h in handles] == [b"ok", b"ok"]
        transport.multi_close(mh)
        assert transport.multi_exec(mh) == (MULTI_BAD_HANDLE, 0)
        assert transport.multi_poll(mh, 0.1) == POLL_ERROR

    def test_crash_recorded_on_handle(self):
        """Test an unexpected exception in a round fails only that handle."""
        def explode(options):
            if options[Opt.URL].endswith("/bad"):
                raise RuntimeError("boom")
            return FakeReply(body=b"ok")

        transport = FakeTransport(explode)
        mh = transport.multi_create(2)
        good, bad = transport.create(), transport.create()
        transport.set_option(good, Opt.URL, "https://example.com/good")
        transport.set_option(bad, Opt.URL, "https://example.com/bad")
        transport.multi_add(mh, good)
        transport.multi_add(mh, bad)
        transport.multi_close(mh)

        assert transport.multi_get_result(good) == b"ok"
        assert transport.multi_get_result(bad) is None
        assert transport.errno(bad) == ERROR_BAD_FUNCTION_ARGUMENT
        assert "boom" in transport.error_string(bad)

    def test_multi_add_after_close(self, fake_transport):
        """Test adding to a closed multi handle raises."""
        mh = fake_transport.multi_create(1)
        fake_transport.multi_close(mh)

        with pytest.raises(TransportError, match="closed"):
            fake_transport.multi_add(mh, fake_transport.create())


class TestTransfer:
    """Tests for the Transfer plumbing."""

    def test_progress_uses_content_length(self):
        """Test progress reports Content-Length and received bytes."""
        progress = MagicMock()
        transfer = Transfer(io.BytesIO(), body=b"abc", progress=progress)
        transfer.on_header(b"HTTP/1.1 200 OK\r\n")
        transfer.on_header(b"Content-Length: 10\r\n")
        transfer.on_body(b"12345")

        progress.on_progress.assert_called_once_with(10, 5, 3, 3)

    def test_content_length_reset_per_hop(self):
        """Test a new status line forgets the previous Content-Length."""
        transfer = Transfer(io.BytesIO())
        transfer.on_header("Content-Length: 10\r\n")
        transfer.on_header("HTTP/1.1 200 OK\r\n")
        assert transfer.expected == 0

    def test_header_sink_receives_text(self):
        """Test header lines are decoded before reaching the sink."""
        sink = MagicMock()
        transfer = Transfer(io.BytesIO(), header_sink=sink)

        assert transfer.on_header(b"X-A: 1\r\n") == 8
        sink.on_header.assert_called_once_with("X-A: 1\r\n")


@pytest.fixture
def mock_curl():
    """Patch curl_cffi.Curl with a mock easy handle."""
    with patch("httpbatch.transport.curl_transport.Curl") as curl_cls:
        curl = curl_cls.return_value
        curl.getinfo.side_effect = lambda info: {
            CurlInfo.RESPONSE_CODE: 200,
            CurlInfo.EFFECTIVE_URL: b"https://example.com/",
        }.get(info, 0)
        yield curl


def perform_with(curl, header_lines=(b"HTTP/1.1 200 OK\r\n",), body=b"hello"):
    """Make curl.perform() feed the registered callbacks."""
    def perform():
        callbacks = {c.args[0]: c.args[1] for c in curl.setopt.call_args_list}
        for line in header_lines:
            callbacks[CurlOpt.HEADERFUNCTION](line)
        callbacks[CurlOpt.WRITEFUNCTION](body)

    curl.perform.side_effect = perform


class TestCurlTransport:
    """Tests for CurlTransport with a mocked curl handle."""

    def test_execute(self, mock_curl):
        """Test a request goes through curl and collects info."""
        perform_with(mock_curl, header_lines=(b"HTTP/1.1 200 OK\r\n", b"X-A: 1\r\n"))
        transport = CurlTransport()
        handle = transport.create()
        transport.set_option(handle, Opt.URL, "https://example.com/")
        transport.set_option(handle, Opt.HTTPGET, True)

        assert transport.execute(handle) == b"hello"
        mock_curl.setopt.assert_any_call(CurlOpt.URL, "https://example.com/")
        mock_curl.setopt.assert_any_call(CurlOpt.HTTPGET, 1)
        assert transport.get_info(handle, "http_code") == 200
        assert transport.get_info(handle, "effective_url") == "https://example.com/"

    def test_option_conversion(self, mock_curl):
        """Test timeouts, headers and raw options are converted."""
        perform_with(mock_curl)
        transport = CurlTransport()
        handle = transport.create()
        transport.set_option(handle, Opt.URL, "https://example.com/")
        transport.set_option(handle, Opt.TIMEOUT, 2.5)
        transport.set_option(handle, Opt.HTTPHEADER, ["X-A: 1"])
        transport.set_option(handle, CurlOpt.VERBOSE, 1)
        transport.execute(handle)

        mock_curl.setopt.assert_any_call(CurlOpt.TIMEOUT_MS, 2500)
        mock_curl.setopt.assert_any_call(CurlOpt.HTTPHEADER, [b"X-A: 1"])
        mock_curl.setopt.assert_any_call(CurlOpt.VERBOSE, 1)

    def test_post_fields(self, mock_curl):
        """Test request bodies are sent with their size."""
        perform_with(mock_curl)
        transport = CurlTransport()
        handle = transport.create()
        transport.set_option(handle, Opt.URL, "https://example.com/")
        transport.set_option(handle, Opt.POST, True)
        transport.set_option(handle, Opt.POSTFIELDS, "a=1")
        transport.execute(handle)

        mock_curl.setopt.assert_any_call(CurlOpt.POSTFIELDS, b"a=1")
        mock_curl.setopt.assert_any_call(CurlOpt.POSTFIELDSIZE, 3)

    def test_curl_error(self, mock_curl):
        """Test curl errors become error codes, not exceptions."""
        mock_curl.perform.side_effect = CurlError("Operation timed out", code=ERROR_TIMEOUT)
        transport = CurlTransport()
        handle = transport.create()
        transport.set_option(handle, Opt.URL, "https://example.com/")

        assert transport.execute(handle) is None
        assert transport.errno(handle) == ERROR_TIMEOUT
        assert "timed out" in transport.error_string(handle)

    def test_multipart(self, mock_curl, tmp_path):
        """Test multipart bodies are built with CurlMime."""
        perform_with(mock_curl)
        path = tmp_path / "report.csv"
        path.write_text("a,b\n")
        transport = CurlTransport()
        handle = transport.create()
        transport.set_option(handle, Opt.URL, "https://example.com/")
        transport.set_option(handle, Opt.POSTFIELDS, {
            "title": "Q1",
            "file": UploadFile(str(path), mime_type="text/csv"),
        })

        with patch("curl_cffi.CurlMime") as mime_cls:
            transport.execute(handle)

        mime = mime_cls.return_value
        mime.addpart.assert_any_call(name="title", data=b"Q1")
        mime.addpart.assert_any_call(
            name="file", content_type="text/csv", filename="report.csv", local_path=str(path),
        )
        mime.attach.assert_called_once()
        mime.close.assert_called_once()

    def test_info_table(self, mock_curl):
        """Test every info field is read with a curl_cffi info constant."""
        mock_curl.getinfo.side_effect = lambda info: {
            CurlInfo.RESPONSE_CODE: 200,
            CurlInfo.SIZE_DOWNLOAD_T: 5,
            CurlInfo.SIZE_UPLOAD_T: 3,
        }.get(info, 0)
        perform_with(mock_curl)
        transport = CurlTransport()
        handle = transport.create()
        transport.set_option(handle, Opt.URL, "https://example.com/")
        transport.execute(handle)

        assert set(_CURL_INFO) == set(INFO_FIELDS)
        assert transport.get_info(handle, "size_download") == 5
        assert transport.get_info(handle, "size_upload") == 3

    def test_multipart_field_list(self, mock_curl):
        """Test a list of form fields without files is still sent as multipart."""
        perform_with(mock_curl)
        transport = CurlTransport()
        handle = transport.create()
        transport.set_option(handle, Opt.URL, "https://example.com/")
        transport.set_option(handle, Opt.POSTFIELDS, [("tag", "a"), ("tag", "b")])

        with patch("curl_cffi.CurlMime") as mime_cls:
            transport.execute(handle)

        assert transport.errno(handle) == 0
        assert mime_cls.return_value.addpart.call_args_list == [
            call(name="tag", data=b"a"),
            call(name="tag", data=b"b"),
        ]
        options_set = [c.args[0] for c in mock_curl.setopt.call_args_list]
        assert CurlOpt.POSTFIELDS not in options_set

    def test_mapping_body_with_xml_type(self, mock_curl):
        """Test a mapping body with a non-form content type is sent as multipart."""
        perform_with(mock_curl)

        with patch("curl_cffi.CurlMime") as mime_cls:
            response = perform(
                CurlTransport(),
                url="https://example.com/",
                method="POST",
                body={"a": "1"},
                content_type="application/xml",
            )

        assert response.status_code == 200
        mime_cls.return_value.addpart.assert_called_once_with(name="a", data=b"1")

    def test_get_stream_body_not_posted(self, mock_curl):
        """Test a stream body never turns a GET into a POST."""
        perform_with(mock_curl)

        perform(CurlTransport(), url="https://example.com/", body=io.BytesIO(b"x"))

        options_set = [c.args[0] for c in mock_curl.setopt.call_args_list]
        assert CurlOpt.POSTFIELDS not in options_set
        mock_curl.setopt.assert_any_call(CurlOpt.HTTPGET, 1)

    def test_reset_and_close(self, mock_curl):
        """Test reset and close reach the curl handle."""
        transport = CurlTransport()
        handle = transport.create()
        transport.reset(handle)
        transport.close(handle)

        mock_curl.reset.assert_called_once()
        mock_curl.close.assert_called_once()

    def test_unavailable(self):
        """Test a clear error without curl_cffi."""
        with patch("httpbatch.transport.curl_transport.CURL_AVAILABLE", False):
            with pytest.raises(ImportError, match="curl_cffi"):
                CurlTransport()


def httpx_transport(handler) -> HttpxTransport:
    return HttpxTransport(transport=httpx.MockTransport(handler))


def perform(transport, **options):
    """Run one request through the wrapper and return the response."""
    request = Request(transport)
    request.reset()
    request.apply_options(Options(**options))
    return request.execute()


class TestHttpxTransport:
    """Tests for HttpxTransport with httpx.MockTransport."""

    def test_get(self):
        """Test a GET with headers and body."""
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(200, headers={"X-A": "1"}, content=b"hello")

        response = perform(httpx_transport(handler), url="https://example.com/", cookies={"a": "1"})
        sent = seen["request"]

        assert response.status_code == 200
        assert response.content() == b"hello"
        assert response.header("x-a") == ["1"]
        assert sent.method == "GET"
        assert sent.headers["cookie"] == "a=1"
        assert sent.headers["user-agent"].startswith("HttpBatch/")

    def test_post_body(self):
        """Test request bodies and custom methods."""
        seen = []

        def handler(request):
            seen.append((request.method, request.content, request.headers.get("content-type")))
            return httpx.Response(204)

        transport = httpx_transport(handler)
        perform(transport, url="https://example.com/", method="POST", body={"a": 1})
        perform(transport, url="https://example.com/", method="PUT", body='{"b":2}')

        assert seen == [
            ("POST", b"a=1", "application/x-www-form-urlencoded"),
            ("PUT", b'{"b":2}', "application/json"),
        ]

    def test_basic_auth(self):
        """Test basic auth credentials are sent."""
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200)

        perform(httpx_transport(handler), url="https://example.com/", auth_basic=("user", "pass"))

        assert seen["auth"] == "Basic " + base64.b64encode(b"user:pass").decode()

    def test_redirect_header_blocks(self):
        """Test every redirect hop produces a header block."""
        def handler(request):
            if request.url.path == "/old":
                return httpx.Response(302, headers={"Location": "/new", "Set-Cookie": "a=1"})
            return httpx.Response(200, headers={"Content-Type": "text/plain"}, content=b"moved")

        response = perform(httpx_transport(handler), url="https://example.com/old")

        assert response.status_code == 200
        assert response.info("redirect_count") == 1
        assert response.info("effective_url") == "https://example.com/new"
        assert response.header("Location") == []
        assert response.header("Set-Cookie") == ["a=1"]
        assert response.header("Content-Type") == ["text/plain"]

    def test_too_many_redirects(self):
        """Test redirect loops end with an error code."""
        def handler(request):
            return httpx.Response(302, headers={"Location": "/loop"})

        response = perform(httpx_transport(handler), url="https://example.com/", max_redirects=2)

        assert response.error_code == ERROR_TOO_MANY_REDIRECTS
        assert response.content() is None

    def test_gzip_body_left_raw(self):
        """Test the transport keeps gzip bodies raw for the Response to inflate."""
        compressed = gzip.compress(b"inflated")

        def handler(request):
            return httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=compressed)

        transport = httpx_transport(handler)
        handle = transport.create()
        transport.set_option(handle, Opt.URL, "https://example.com/")

        assert transport.execute(handle) == compressed
        assert perform(transport, url="https://example.com/").content() == b"inflated"

    def test_default_accept_encoding_identity(self):
        """Test httpx does not advertise encodings it was not asked for."""
        seen = {}

        def handler(request):
            seen["accept-encoding"] = request.headers.get("accept-encoding")
            return httpx.Response(200)

        perform(httpx_transport(handler), url="https://example.com/", accept_gzip=False)

        assert seen["accept-encoding"] == "identity"

    @pytest.mark.parametrize(
        "error,code",
        [
            (httpx.ReadTimeout, ERROR_TIMEOUT),
            (httpx.ConnectError, ERROR_COULDNT_CONNECT),
            (httpx.ReadError, ERROR_RECV),
        ],
    )
    def test_error_mapping(self, error, code):
        """Test httpx exceptions become error codes."""
        def handler(request):
            raise error("failed", request=request)

        response = perform(httpx_transport(handler), url="https://example.com/")

        assert response.error_code == code
        assert "failed" in response.error_message
        assert response.content() is None

    def test_multipart(self, tmp_path):
        """Test multipart bodies are sent as form data with files."""
        path = tmp_path / "report.csv"
        path.write_text("a,b\n")
        seen = {}

        def handler(request):
            seen["content_type"] = request.headers["content-type"]
            seen["body"] = request.read()
            return httpx.Response(200)

        perform(
            httpx_transport(handler),
            url="https://example.com/",
            method="POST",
            body={"title": "Q1", "file": UploadFile(str(path), mime_type="text/csv")},
        )

        assert seen["content_type"].startswith("multipart/form-data; boundary=")
        assert b'filename="report.csv"' in seen["body"]
        assert b"a,b\n" in seen["body"]
        assert b"Q1" in seen["body"]

    @pytest.mark.parametrize("content_type", ["multipart/form-data", "application/xml"])
    def test_mapping_without_files_is_multipart(self, content_type):
        """Test a mapping body with a non-form content type is sent as multipart."""
        seen = {}

        def handler(request):
            seen["content_type"] = request.headers["content-type"]
            seen["body"] = request.read()
            return httpx.Response(200)

        response = perform(
            httpx_transport(handler),
            url="https://example.com/",
            method="POST",
            body={"a": "1"},
            content_type=content_type,
        )

        assert response.status_code == 200
        assert seen["content_type"].startswith("multipart/form-data; boundary=")
        assert b'name="a"' in seen["body"]
        assert b"filename" not in seen["body"]

    def test_multipart_pair_list(self, tmp_path):
        """Test a list of (name, value) pairs with repeated file fields."""
        first, second = tmp_path / "a.txt", tmp_path / "b.txt"
        first.write_text("first")
        second.write_text("second")
        seen = {}

        def handler(request):
            seen["body"] = request.read()
            return httpx.Response(200)

        response = perform(
            httpx_transport(handler),
            url="https://example.com/",
            method="POST",
            body=[("doc", UploadFile(str(first))), ("doc", UploadFile(str(second)))],
        )

        assert response.status_code == 200
        assert b'filename="a.txt"' in seen["body"]
        assert b'filename="b.txt"' in seen["body"]

    def test_raw_options_warn(self):
        """Test raw curl options are ignored with a warning."""
        transport = httpx_transport(lambda request: httpx.Response(200))
        handle = transport.create()
        transport.set_option(handle, Opt.URL, "https://example.com/")
        transport.set_option(handle, "verbose", 1)

        with pytest.warns(UserWarning, match="not supported by httpx"):
            transport.execute(handle)

    def test_client_reused(self):
        """Test the httpx client is kept while its settings do not change."""
        transport = httpx_transport(lambda request: httpx.Response(200))
        request = Request(transport)
        for _ in range(2):
            request.reset()
            request.apply_options(Options(url="https://example.com/"))
            request.execute()
        first = request.handle.native.client

        request.reset()
        request.apply_options(Options(url="https://example.com/", max_redirects=1))
        request.execute()

        assert request.handle.native.client is not first


class TestDefaultTransport:
    """Tests for transport selection."""

    def test_prefers_curl(self):
        """Test curl_cffi is preferred."""
        with patch("httpbatch.transport.CURL_AVAILABLE", True):
            with patch("httpbatch.transport.CurlTransport") as curl_cls:
                assert default_transport() is curl_cls.return_value

    def test_falls_back_to_httpx(self):
        """Test httpx is used without curl_cffi."""
        with patch("httpbatch.transport.CURL_AVAILABLE", False):
            assert isinstance(default_transport(), HttpxTransport)

    def test_no_transport(self):
        """Test a clear error without any transport library."""
        with patch("httpbatch.transport.CURL_AVAILABLE", False):
            with patch("httpbatch.transport.HTTPX_AVAILABLE", False):
                with pytest.raises(ImportError, match="No transport library"):
                    default_transport()
