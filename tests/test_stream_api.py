import base64

from fastapi.testclient import TestClient

from iptvlinks.config import Settings
from iptvlinks.main import create_app

PLAYLIST = b"#EXTM3U\n#EXTINF:10,\nseg001.ts\n#EXTINF:10,\n/abs/seg002.ts\n"


def test_proxy_rewrites_playlist(client, upstream):
    upstream.add(
        "http://cdn.example.com/live/news1/index.m3u8",
        content=PLAYLIST,
        headers={"Content-Type": "application/vnd.apple.mpegurl"},
    )
    resp = client.get("/stream/news/1")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/vnd.apple.mpegurl")
    assert resp.text.splitlines() == [
        "#EXTM3U",
        "#EXTINF:10,",
        "http://cdn.example.com/live/news1/seg001.ts",
        "#EXTINF:10,",
        "http://cdn.example.com/abs/seg002.ts",
    ]
    assert resp.headers["x-channel-name"] == "News%20One"
    assert resp.headers["x-channel-category"] == "news"
    assert resp.headers["access-control-allow-origin"] == "*"


def test_proxy_uses_final_url_after_redirects_as_base(client, upstream):
    upstream.add(
        "http://cdn.example.com/live/news1/index.m3u8",
        status=302,
        headers={"Location": "http://edge2.example.com/hls/news/index.m3u8"},
    )
    upstream.add(
        "http://edge2.example.com/hls/news/index.m3u8",
        content=b"#EXTM3U\nchunk.ts",
        headers={"Content-Type": "application/x-mpegURL"},
    )
    resp = client.get("/stream/news/1")
    assert resp.status_code == 200
    assert resp.text == "#EXTM3U\nhttp://edge2.example.com/hls/news/chunk.ts"
    assert resp.headers["x-redirect-count"] == "1"


def test_proxy_defaults_playlist_content_type(client, upstream):
    upstream.add("http://cdn.example.com/live/news1/index.m3u8", content=b"#EXTM3U\nseg.ts")
    resp = client.get("/stream/news/1")
    assert resp.headers["content-type"].startswith("application/vnd.apple.mpegurl")
    assert resp.text == "#EXTM3U\nhttp://cdn.example.com/live/news1/seg.ts"


def test_proxy_streams_non_playlist_bodies_untouched(client, upstream):
    upstream.add("http://sports.example.com/hd.ts", content=b"\x47\x00\x11seg.ts", headers={"Content-Type": "video/mp2t"})
    resp = client.get("/stream/sports/42")
    assert resp.status_code == 200
    assert resp.content == b"\x47\x00\x11seg.ts"
    assert resp.headers["content-type"] == "video/mp2t"


def test_category_lookup_is_case_insensitive(client, upstream):
    upstream.add("http://sports.example.com/hd.ts", content=b"ts", headers={"Content-Type": "video/mp2t"})
    assert client.get("/stream/SPORTS/42").status_code == 200


def test_invalid_id(client):
    resp = client.get("/stream/news/abc")
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid ID format"}


def test_unknown_id(client):
    resp = client.get("/stream/news/999")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Link with ID 999 not found or invalid."}


def test_category_mismatch(client):
    resp = client.get("/stream/news/42")
    assert resp.status_code == 400
    assert resp.json()["error"].startswith("Category mismatch.")


def test_missing_original(client, store):
    data = store.get_links_data()
    data.links[0].original = ""
    store.save_links_data(data)
    resp = client.get("/stream/news/1")
    assert resp.status_code == 404


def test_upstream_error_is_reported(client, upstream):
    upstream.add("http://sports.example.com/hd.ts", status=503, content=b"overloaded")
    resp = client.get("/stream/sports/42")
    assert resp.status_code == 502
    body = resp.json()
    assert body["status"] == 503
    assert body["details"] == "overloaded"


def test_too_many_redirects(make_client, upstream):
    upstream.add("http://sports.example.com/hd.ts", status=302, headers={"Location": "http://sports.example.com/hd.ts"})
    resp = make_client(max_redirects=2).get("/stream/sports/42")
    assert resp.status_code == 502
    assert "Too many redirects" in resp.json()["error"]


def test_network_failure_is_500_with_details(store):
    import httpx

    def boom(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    app = create_app(Settings(), store=store)
    app.state.http_client = httpx.AsyncClient(transport=httpx.MockTransport(boom))
    resp = TestClient(app).get("/stream/sports/42")
    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to fetch stream", "details": "timed out"}


def test_redirect_mode(make_client, upstream):
    resp = make_client(response_mode="redirect").get("/stream/news/1", follow_redirects=False)
    assert resp.status_code == 307
    assert resp.headers["location"] == "http://cdn.example.com/live/news1/index.m3u8"
    assert upstream.requests == []


def test_redirect_mode_can_resolve_upstream_chain(make_client, upstream):
    upstream.add("http://sports.example.com/hd.ts", status=302, headers={"Location": "http://edge.example.com/hd.ts"})
    upstream.add("http://edge.example.com/hd.ts", content=b"ts")
    client = make_client(response_mode="redirect", redirect_resolve_upstream=True)
    resp = client.get("/stream/sports/42", follow_redirects=False)
    assert resp.status_code == 307
    assert resp.headers["location"] == "http://edge.example.com/hd.ts"


def test_json_mode(make_client):
    resp = make_client(response_mode="json").get("/stream/sports/1")
    assert resp.status_code == 200
    assert resp.json() == {"url": "https://sports.example.com/one.m3u8"}


def test_preflight(client):
    resp = client.options("/stream/news/1")
    assert resp.status_code == 204
    assert resp.headers["access-control-allow-origin"] == "*"

    resp = client.options(
        "/stream/news/1",
        headers={"Origin": "http://player.example", "Access-Control-Request-Method": "GET"},
    )
    assert resp.status_code == 200
    assert resp.headers["access-control-allow-origin"] == "*"


def test_generic_proxy(client, upstream):
    upstream.add(
        "http://cdn.example.com/a/master.m3u8",
        content=b"#EXTM3U\nlow.m3u8",
        headers={"Content-Type": "application/vnd.apple.mpegurl"},
    )
    resp = client.get("/api/proxy", params={"url": "cdn.example.com/a/master.m3u8"})
    assert resp.status_code == 200
    assert resp.text == "#EXTM3U\nhttp://cdn.example.com/a/low.m3u8"


def _basic(user, password):
    token = base64.b64encode(f"{user}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


def test_basic_auth(store, upstream):
    app = create_app(Settings(basic_auth_user="admin", basic_auth_password="s3cret"), store=store)
    app.state.http_client = upstream.client()
    client = TestClient(app)

    resp = client.get("/api/links")
    assert resp.status_code == 401
    assert resp.headers["www-authenticate"] == 'Basic realm="Secure Area"'
    assert client.get("/api/links", headers=_basic("admin", "wrong")).status_code == 401
    assert client.get("/api/links", headers={"Authorization": "Basic !!!"}).status_code == 401
    assert client.get("/api/links", headers=_basic("admin", "s3cret")).status_code == 200
    assert client.get("/api/health").status_code == 200
    assert client.get("/stream/news/1").status_code == 401


def test_streams_can_be_left_public(store, upstream):
    settings = Settings(basic_auth_user="admin", basic_auth_password="s3cret", protect_streams=False)
    app = create_app(settings, store=store)
    app.state.http_client = upstream.client()
    upstream.add("http://sports.example.com/hd.ts", content=b"ts", headers={"Content-Type": "video/mp2t"})
    client = TestClient(app)
    assert client.get("/stream/sports/42").status_code == 200
    assert client.get("/api/links").status_code == 401


def test_unbuildable_upstream_url_is_500_json(client, store, upstream):
    data = store.get_links_data()
    data.links[0].original = "http://exa mple.com/a b\x00.m3u8"
    store.save_links_data(data)
    resp = client.get("/stream/news/1")
    assert resp.status_code == 500
    assert resp.headers["content-type"].startswith("application/json")
    body = resp.json()
    assert body["error"] == "Failed to fetch stream"
    assert body["details"]
    assert upstream.requests == []


def test_unbuildable_url_in_redirect_resolve_mode(make_client, store):
    data = store.get_links_data()
    data.links[0].original = "http://exa mple.com/a b\x00.m3u8"
    store.save_links_data(data)
    resp = make_client(response_mode="redirect", redirect_resolve_upstream=True).get(
        "/stream/news/1", follow_redirects=False
    )
    assert resp.status_code == 500
    assert resp.json()["error"] == "Failed to fetch stream"


def test_query_only_reference_stays_on_playlist(client, upstream):
    upstream.add(
        "http://cdn.example.com/live/news1/index.m3u8",
        content=b'#EXTM3U\n#EXT-X-SESSION-DATA:URI="?v=2"\n?part=1',
        headers={"Content-Type": "application/vnd.apple.mpegurl"},
    )
    resp = client.get("/stream/news/1")
    assert resp.text.splitlines() == [
        "#EXTM3U",
        '#EXT-X-SESSION-DATA:URI="http://cdn.example.com/live/news1/index.m3u8?v=2"',
        "http://cdn.example.com/live/news1/index.m3u8?part=1",
    ]
