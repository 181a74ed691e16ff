import logging
from typing import Optional

import httpx
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response, StreamingResponse
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import links as ops
from .auth import BasicAuthMiddleware
from .config import Settings, StreamConfig, load_settings
from .errors import StorageError, StreamError, UnknownFailure
from .fetcher import FetchResult, create_client, fetch_with_redirects, iter_body
from .m3u import M3UEntry, build_m3u, parse_m3u, parse_m3u_urls
from .models import (
    BulkDelete,
    CategoryIn,
    CategoryRename,
    ImportIn,
    LinkCreate,
    LinkUpdate,
    ReplaceIn,
    UpdateSelected,
)
from .playlist import is_playlist_content_type, rewrite_playlist
from .resolver import parse_link_id, resolve_stream
from .storage import LinkStore, create_store
from .url_utils import header_safe, looks_like_playlist, normalize_stream_url

logger = logging.getLogger(__name__)

HLS_CONTENT_TYPE = "application/vnd.apple.mpegurl"
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "*",
}

router = APIRouter()


def get_store(request: Request) -> LinkStore:
    return request.app.state.store


def get_stream_config(request: Request) -> StreamConfig:
    return request.app.state.settings.stream


def get_http_client(request: Request) -> httpx.AsyncClient:
    client = request.app.state.http_client
    if client is None or client.is_closed:
        client = create_client(get_stream_config(request))
        request.app.state.http_client = client
    return client


def default_content_type(url: str) -> str:
    return HLS_CONTENT_TYPE if looks_like_playlist(url) else "application/octet-stream"


async def fetch_upstream(client: httpx.AsyncClient, url: str, config: StreamConfig) -> FetchResult:
    # httpx.InvalidURL is not an HTTPError; a malformed stored URL raises it
    try:
        return await fetch_with_redirects(client, url, config)
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
        logger.warning("Fetching %s failed: %s", url, exc)
        raise UnknownFailure("Failed to fetch stream", details=str(exc) or type(exc).__name__) from exc


async def proxy_response(
    client: httpx.AsyncClient,
    url: str,
    config: StreamConfig,
    extra_headers: Optional[dict] = None,
) -> Response:
    """Fetch ``url`` and hand it to the client, rewriting HLS playlists on the way."""
    result = await fetch_upstream(client, url, config)
    upstream = result.response
    content_type = upstream.headers.get("content-type") or default_content_type(result.url)
    headers = {"Access-Control-Allow-Origin": "*", "X-Redirect-Count": str(result.hops)}
    headers.update(extra_headers or {})

    if not is_playlist_content_type(content_type, config.playlist_content_types):
        # the background close covers a body iterator that never gets started
        return StreamingResponse(
            iter_body(upstream, config.chunk_size),
            media_type=content_type,
            headers=headers,
            background=BackgroundTask(upstream.aclose),
        )

    try:
        await upstream.aread()
        text = upstream.text
    except httpx.HTTPError as exc:
        raise UnknownFailure("Failed to read playlist", details=str(exc) or type(exc).__name__) from exc
    finally:
        await upstream.aclose()
    return Response(rewrite_playlist(text, result.url), media_type=content_type, headers=headers)


# --- streams -----------------------------------------------------------------


@router.options("/stream/{category}/{link_id}")
async def stream_preflight(category: str, link_id: str):
    return Response(status_code=204, headers=CORS_HEADERS)


@router.get("/stream/{category}/{link_id}")
async def stream(category: str, link_id: str, request: Request):
    config = get_stream_config(request)
    store = get_store(request)

    all_links = await run_in_threadpool(store.get_all_links)
    resolved = resolve_stream(all_links, category, link_id)
    headers = {
        "X-Channel-Name": header_safe(resolved.link.name),
        "X-Channel-Category": header_safe(resolved.link.category),
        "Access-Control-Allow-Origin": "*",
    }

    if config.response_mode == "json":
        return JSONResponse({"url": resolved.target_url}, headers=headers)

    client = get_http_client(request)
    if config.response_mode == "redirect":
        target = resolved.target_url
        if config.redirect_resolve_upstream:
            result = await fetch_upstream(client, target, config)
            await result.response.aclose()
            target = result.url
        return RedirectResponse(target, status_code=307, headers=headers)

    return await proxy_response(client, resolved.target_url, config, headers)


@router.get("/api/proxy")
async def proxy(url: str, request: Request):
    if not url.strip():
        raise HTTPException(400, "Missing URL parameter")
    return await proxy_response(get_http_client(request), normalize_stream_url(url), get_stream_config(request))


# --- links -------------------------------------------------------------------


@router.get("/api/links")
def list_links(request: Request):
    data = get_store(request).get_links_data()
    return {"links": [l.dump() for l in data.links], "categories": data.categories}


@router.post("/api/links")
def create_link(body: LinkCreate, request: Request):
    if not body.name.strip() or not body.original.strip():
        raise HTTPException(400, "Original URL and name are required")
    store = get_store(request)
    data = store.get_links_data()
    link = ops.add_link(data, body.name, body.original, body.category)
    store.save_links_data(data)
    logger.info("Created link %s/%d", link.category, link.id)
    return link.dump()


@router.delete("/api/links")
def delete_selected(body: BulkDelete, request: Request):
    try:
        keys = [ops.parse_composite_id(i) for i in body.ids]
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    store = get_store(request)
    data = store.get_links_data()
    deleted = ops.delete_links(data, keys)
    store.save_links_data(data)
    return {"message": f"Deleted {deleted} links", "deleted": deleted}


@router.post("/api/links/replace")
def replace_text(body: ReplaceIn, request: Request):
    if not body.search_text:
        raise HTTPException(400, "Search text is required")
    store = get_store(request)
    all_links = store.get_all_links()
    count = ops.replace_in_urls(all_links, body.search_text, body.replace_text)
    if count == 0:
        return {"message": "No links were updated - search text not found in any URLs", "replacedCount": 0}
    store.save_links(all_links)
    return {
        "message": f'Successfully replaced "{body.search_text}" with "{body.replace_text}" in {count} link(s)',
        "replacedCount": count,
    }


@router.post("/api/links/update-selected")
def update_selected(body: UpdateSelected, request: Request):
    if not body.link_ids:
        raise HTTPException(400, "No links selected")
    try:
        keys = [ops.parse_composite_id(i) for i in body.link_ids]
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    if not body.m3u_content.strip():
        raise HTTPException(400, "No M3U content provided")

    urls = parse_m3u_urls(body.m3u_content)
    if not urls:
        raise HTTPException(400, "No valid URLs found in M3U content")
    if len(urls) != len(keys):
        raise HTTPException(
            400,
            {
                "error": "Number of URLs in M3U content does not match number of selected links",
                "details": {"selectedLinks": len(keys), "urlsFound": len(urls)},
            },
        )

    store = get_store(request)
    data = store.get_links_data()
    updated = ops.assign_urls(data, keys, urls)
    if updated == 0:
        raise HTTPException(404, "No matching links found to update")
    store.save_links_data(data)
    return {"message": f"Successfully updated {updated} links", "updatedCount": updated}


@router.patch("/api/links/{category}/{link_id}")
def update_link(category: str, link_id: str, body: LinkUpdate, request: Request):
    store = get_store(request)
    data = store.get_links_data()
    link = ops.find_link(data, category, parse_link_id(link_id))
    if not link:
        raise HTTPException(404, "Link not found")
    if body.name is not None:
        if not body.name.strip():
            raise HTTPException(400, "Name cannot be empty")
        link.name = body.name.strip()
    if body.original is not None:
        if not body.original.strip():
            raise HTTPException(400, "Original URL cannot be empty")
        link.original = body.original.strip()
    if body.category is not None:
        ops.move_link(data, link, body.category)
    store.save_links_data(data)
    return link.dump()


@router.delete("/api/links/{category}/{link_id}")
def delete_link(category: str, link_id: str, request: Request):
    store = get_store(request)
    data = store.get_links_data()
    if not ops.delete_links(data, [(category, parse_link_id(link_id))]):
        raise HTTPException(404, "Link not found")
    store.save_links_data(data)
    return {"success": True}


@router.post("/api/import")
def import_playlist(body: ImportIn, request: Request):
    if not body.content.strip():
        raise HTTPException(400, "No content provided")
    entries = parse_m3u(body.content)
    if not entries:
        raise HTTPException(400, "No channels found in M3U content")
    store = get_store(request)
    data = store.get_links_data()
    imported = ops.import_entries(data, entries, body.category)
    store.save_links_data(data)
    category = ops.clean_category(body.category)
    logger.info("Imported %d channels into %s", len(imported), category)
    return {"success": True, "count": len(imported), "category": category}


@router.get("/api/export/m3u")
def export_m3u(request: Request):
    base = str(request.base_url).rstrip("/")
    all_links = get_store(request).get_all_links()
    playlist = build_m3u(
        [M3UEntry(l.name, base + l.converted) for l in all_links],
        [l.category for l in all_links],
    )
    return PlainTextResponse(playlist, media_type="audio/x-mpegurl")


# --- categories --------------------------------------------------------------


@router.get("/api/categories")
def list_categories(request: Request):
    return get_store(request).get_links_data().categories


@router.post("/api/categories")
def add_category(body: CategoryIn, request: Request):
    name = body.name.strip()
    if not name:
        raise HTTPException(400, "Category name is required")
    store = get_store(request)
    data = store.get_links_data()
    if not ops.register_category(data, name):
        raise HTTPException(409, "Category already exists")
    store.save_links_data(data)
    return {"name": ops.clean_category(name)}


@router.post("/api/categories/rename")
def rename_category(body: CategoryRename, request: Request):
    if not body.old_name.strip() or not body.new_name.strip():
        raise HTTPException(400, "Old name and new name are required")
    if ops.clean_category(body.old_name) == ops.clean_category(body.new_name):
        return {"message": "Names are identical, no changes made", "updatedLinks": 0}
    store = get_store(request)
    data = store.get_links_data()
    try:
        moved = ops.rename_category(data, body.old_name, body.new_name)
    except KeyError:
        raise HTTPException(404, "Category not found")
    store.save_links_data(data)
    return {"message": "Category renamed successfully", "updatedLinks": moved}


@router.delete("/api/categories/{name}")
def delete_category(name: str, request: Request):
    store = get_store(request)
    data = store.get_links_data()
    try:
        moved = ops.delete_category(data, name)
    except KeyError:
        raise HTTPException(404, "Category not found")
    store.save_links_data(data)
    return {"success": True, "updatedLinks": moved}


@router.get("/api/health")
def health():
    return {"status": "ok"}


# --- app ---------------------------------------------------------------------


async def stream_error_handler(request: Request, exc: StreamError):
    return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers={"Access-Control-Allow-Origin": "*"})


async def storage_error_handler(request: Request, exc: StorageError):
    logger.error("Storage failure on %s: %s", request.url.path, exc)
    return JSONResponse({"error": "Storage unavailable", "details": str(exc)}, status_code=500)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    body = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    return JSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))


def create_app(settings: Optional[Settings] = None, store: Optional[LinkStore] = None) -> FastAPI:
    settings = settings or load_settings()
    app = FastAPI(title="IPTV Links")
    app.state.settings = settings
    app.state.store = store or create_store(settings)
    app.state.http_client = None

    app.add_exception_handler(StreamError, stream_error_handler)
    app.add_exception_handler(StorageError, storage_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)

    if settings.auth_enabled:
        app.add_middleware(
            BasicAuthMiddleware,
            username=settings.basic_auth_user,
            password=settings.basic_auth_password,
            protect_streams=settings.protect_streams,
        )
    else:
        logger.warning("BASIC_AUTH_USER/BASIC_AUTH_PASSWORD not set, authentication disabled")

    # added last so it wraps auth and preflights never hit a 401
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Channel-Name", "X-Channel-Category", "X-Redirect-Count"],
    )

    app.include_router(router)

    @app.on_event("startup")
    async def startup_event():
        if app.state.http_client is None:
            app.state.http_client = create_client(settings.stream)
        logger.info("Stream response mode: %s", settings.stream.response_mode)

    @app.on_event("shutdown")
    async def shutdown_event():
        if app.state.http_client is not None:
            await app.state.http_client.aclose()
            app.state.http_client = None

    return app
