import http.client
import threading

import pytest

from runcode.server import build_server, content_type_for, rewrite_cdn_urls, safe_join

CHART_CDN = "https://cdnjs.cloudflare.com/ajax/libs/Chart.js/3.9.1/chart.min.js"


@pytest.fixture
def site(tmp_path):
    root = tmp_path / "site"
    root.mkdir()
    (root / "index.html").write_text(f'<script src="{CHART_CDN}"></script>', encoding="utf-8")
    (root / "data.json").write_text('{"ok": true}', encoding="utf-8")
    (tmp_path / "secret.txt").write_text("outside", encoding="utf-8")
    return root


@pytest.fixture
def server(site):
    srv = build_server(0, site)
    thread = threading.Thread(target=srv.serve_forever, daemon=True)
    thread.start()
    yield srv
    srv.shutdown()
    srv.server_close()


def _request(server, method, path):
    host, port = server.server_address[:2]
    connection = http.client.HTTPConnection(host, port, timeout=5)
    try:
        connection.request(method, path)
        response = connection.getresponse()
        return response.status, response.getheader("Content-Type"), response.read()
    finally:
        connection.close()


def test_root_serves_index_with_cdn_rewritten(server):
    status, ctype, body = _request(server, "GET", "/")

    assert status == 200
    assert ctype.startswith("text/html")
    assert b"/embedded-libs/chart.js/chart.min.js" in body
    assert CHART_CDN.encode() not in body


def test_json_file(server):
    status, ctype, body = _request(server, "GET", "/data.json")

    assert status == 200
    assert ctype.startswith("application/json")
    assert body == b'{"ok": true}'


def test_head_has_no_body(server):
    status, _, body = _request(server, "HEAD", "/data.json")

    assert status == 200
    assert body == b""


def test_missing_file_is_404(server):
    status, _, _ = _request(server, "GET", "/nope.txt")

    assert status == 404


def test_traversal_is_rejected(server):
    status, _, body = _request(server, "GET", "/../../etc/passwd")

    assert status == 403
    assert b"root:" not in body


def test_encoded_traversal_is_rejected(server):
    status, _, body = _request(server, "GET", "/%2e%2e/secret.txt")

    assert status == 403
    assert b"outside" not in body


def test_safe_join_rejects_sibling_prefix(tmp_path):
    root = tmp_path / "site"
    root.mkdir()

    assert safe_join(root, "/a/b.txt") == (root / "a" / "b.txt").resolve()
    with pytest.raises(PermissionError):
        safe_join(root, "../site2/file.txt")


def test_rewrite_cdn_urls_with_custom_table():
    html = '<link href="https://cdn.example/x.css">'

    assert rewrite_cdn_urls(html, {"https://cdn.example/x.css": "/local/x.css"}) == '<link href="/local/x.css">'


def test_content_type_override(tmp_path):
    assert content_type_for(tmp_path / "a.js").startswith("application/javascript")
    assert content_type_for(tmp_path / "blob.unknownext") == "application/octet-stream"
