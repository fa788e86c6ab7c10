import gzip

import pytest

from anubiskit.middleware import (
    CantParseRemoteIPError,
    CantSplitHostPortError,
    XFFComputePreferences,
    compute_xff_header,
    gzip_middleware,
    no_browsing,
    no_store_cache,
    parse_xff,
    remote_x_real_ip,
    unchanging_cache,
    x_forwarded_for_to_x_real_ip,
    x_forwarded_for_update,
)

ALL = XFFComputePreferences(
    strip_private=True, strip_loopback=True, strip_cgnat=True, strip_llu=True, flatten=True
)


def make_environ(**extra):
    environ = {
        "REQUEST_METHOD": "GET",
        "SCRIPT_NAME": "",
        "PATH_INFO": "/",
        "SERVER_NAME": "localhost",
        "SERVER_PORT": "80",
        "REMOTE_ADDR": "127.0.0.1",
        "REMOTE_PORT": "54321",
        "wsgi.url_scheme": "http",
    }
    environ.update(extra)
    return environ


def recording_app(seen, headers=None, body=b"ok"):
    def app(environ, start_response):
        seen.clear()
        seen.update(environ)
        start_response("200 OK", list(headers or [("Content-Type", "text/plain")]))
        return [body]

    return app


def call(app, environ):
    captured = {"written": []}

    def start_response(status, headers, exc_info=None):
        captured["status"] = status
        captured["headers"] = headers
        return captured["written"].append

    result = app(environ, start_response)
    chunks = list(result)
    if hasattr(result, "close"):
        result.close()
    body = b"".join(captured["written"]) + b"".join(chunks)
    return captured["status"], dict(captured["headers"]), body


@pytest.mark.parametrize(
    "remote_addr, orig, pref, expected",
    [
        ("127.0.0.1:80", "1.1.1.1,10.0.0.1", XFFComputePreferences(strip_private=True), "1.1.1.1,127.0.0.1"),
        ("127.0.0.1:80", "1.1.1.1,10.0.0.1", XFFComputePreferences(strip_private=False), "1.1.1.1,10.0.0.1,127.0.0.1"),
        ("127.0.0.1:80", "1.1.1.1,10.0.0.1,127.0.0.1", XFFComputePreferences(strip_loopback=True), "1.1.1.1,10.0.0.1"),
        ("100.64.0.1:80", "1.1.1.1,10.0.0.1,100.64.0.1", XFFComputePreferences(strip_cgnat=True), "1.1.1.1,10.0.0.1"),
        ("169.254.0.1:80", "1.1.1.1,10.0.0.1,169.254.0.1", XFFComputePreferences(strip_llu=True), "1.1.1.1,10.0.0.1"),
        ("169.254.0.1:80", "1.1.1.1,10.0.0.1,fe80::", XFFComputePreferences(strip_llu=True), "1.1.1.1,10.0.0.1"),
        ("127.0.0.1:80", "1.1.1.1,10.0.0.1,fe80::,100.64.0.1,169.254.0.1", ALL, "1.1.1.1"),
        ("127.0.0.1:80", "1.1.1.1, 10.0.0.1, fe80::, 100.64.0.1, 169.254.0.1", ALL, "1.1.1.1"),
        ("127.0.0.1:80", "", ALL, ""),
    ],
    ids=[
        "StripPrivate",
        "KeepPrivate",
        "StripLoopback",
        "StripCGNAT",
        "StripLinkLocalUnicastIPv4",
        "StripLinkLocalUnicastIPv6",
        "Flatten",
        "TrimSpaces",
        "no-xff-dont-panic",
    ],
)
def test_compute_xff_header(remote_addr, orig, pref, expected):
    assert compute_xff_header(remote_addr, orig, pref) == expected


def test_compute_xff_header_invalid_ip_port():
    with pytest.raises(CantSplitHostPortError):
        compute_xff_header("fe80::", "", XFFComputePreferences())


def test_compute_xff_header_invalid_remote_ip():
    with pytest.raises(CantParseRemoteIPError):
        compute_xff_header("anubis:80", "", XFFComputePreferences())


def test_compute_xff_header_stops_at_unparseable_segment():
    result = compute_xff_header("8.8.8.8:80", "1.1.1.1,garbage,9.9.9.9", XFFComputePreferences())
    assert result == "9.9.9.9,8.8.8.8"


def test_x_forwarded_for_update_ignores_unix():
    seen = {}
    app = x_forwarded_for_update(True, recording_app(seen))
    call(app, make_environ(REMOTE_ADDR="@"))
    assert seen["REMOTE_ADDR"] == "@"
    assert seen.get("HTTP_X_FORWARDED_FOR", "") == ""


def test_x_forwarded_for_update_adds_to_chain():
    seen = {}
    app = x_forwarded_for_update(True, recording_app(seen))
    call(app, make_environ(HTTP_X_FORWARDED_FOR="1.1.1.1,10.20.30.40"))
    assert seen["HTTP_X_FORWARDED_FOR"] == "1.1.1.1"


def test_x_forwarded_for_update_removes_empty_chain():
    seen = {}
    app = x_forwarded_for_update(True, recording_app(seen))
    call(app, make_environ(HTTP_X_FORWARDED_FOR="10.0.0.1"))
    assert "HTTP_X_FORWARDED_FOR" not in seen


def test_parse_xff_returns_first_public_address():
    assert parse_xff("10.0.0.1, 127.0.0.1, 8.8.8.8, 1.1.1.1") == "8.8.8.8"
    assert parse_xff("10.0.0.1, 192.168.0.1") == ""


def test_x_forwarded_for_to_x_real_ip_sets_header():
    seen = {}
    app = x_forwarded_for_to_x_real_ip(recording_app(seen))
    call(app, make_environ(HTTP_X_FORWARDED_FOR="10.0.0.1, 8.8.8.8"))
    assert seen["HTTP_X_REAL_IP"] == "8.8.8.8"


def test_x_forwarded_for_to_x_real_ip_keeps_existing():
    seen = {}
    app = x_forwarded_for_to_x_real_ip(recording_app(seen))
    call(app, make_environ(HTTP_X_FORWARDED_FOR="8.8.8.8", HTTP_X_REAL_IP="1.1.1.1"))
    assert seen["HTTP_X_REAL_IP"] == "1.1.1.1"


def test_remote_x_real_ip_disabled_returns_app():
    app = recording_app({})
    assert remote_x_real_ip(False, "tcp", app) is app


def test_remote_x_real_ip_unix_socket():
    seen = {}
    call(remote_x_real_ip(True, "unix", recording_app(seen)), make_environ(REMOTE_ADDR="@"))
    assert seen["HTTP_X_REAL_IP"] == "127.0.0.1"


def test_remote_x_real_ip_tcp():
    seen = {}
    call(remote_x_real_ip(True, "tcp", recording_app(seen)), make_environ(REMOTE_ADDR="8.8.4.4"))
    assert seen["HTTP_X_REAL_IP"] == "8.8.4.4"


def test_no_store_cache_sets_header():
    _, headers, _ = call(no_store_cache(recording_app({})), make_environ())
    assert headers["Cache-Control"] == "no-store"


def test_unchanging_cache_release_sets_header():
    _, headers, _ = call(unchanging_cache(recording_app({}), "v1.0.0"), make_environ())
    assert headers["Cache-Control"] == "public, max-age=31536000"


def test_unchanging_cache_devel_is_passthrough():
    app = recording_app({})
    assert unchanging_cache(app, "devel") is app


def test_no_browsing_rejects_directories():
    status, _, body = call(no_browsing(recording_app({})), make_environ(PATH_INFO="/static/"))
    assert status.startswith("404")
    assert body == b"404 page not found\n"


def test_no_browsing_allows_files():
    status, _, body = call(no_browsing(recording_app({})), make_environ(PATH_INFO="/static/app.js"))
    assert status == "200 OK"
    assert body == b"ok"


def test_gzip_middleware_compresses():
    payload = b"hello world " * 100
    app = gzip_middleware(6, recording_app({}, [("Content-Length", str(len(payload)))], payload))
    _, headers, body = call(app, make_environ(HTTP_ACCEPT_ENCODING="gzip, deflate"))
    assert headers["Content-Encoding"] == "gzip"
    assert "Content-Length" not in headers
    assert gzip.decompress(body) == payload


def test_gzip_middleware_handles_write_callable():
    def app(environ, start_response):
        write = start_response("200 OK", [])
        write(b"first ")
        return [b"second"]

    _, _, body = call(gzip_middleware(9, app), make_environ(HTTP_ACCEPT_ENCODING="gzip"))
    assert gzip.decompress(body) == b"first second"


def test_gzip_middleware_passthrough_without_accept():
    _, headers, body = call(gzip_middleware(6, recording_app({})), make_environ())
    assert body == b"ok"
    assert "Content-Encoding" not in headers


def test_gzip_middleware_invalid_level():
    with pytest.raises(ValueError):
        gzip_middleware(42, recording_app({}))