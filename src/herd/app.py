"""Herd application — chirp routes over the server services.

``create_app`` wires the todo CRUD endpoints, the ``todos`` SSE stream that
leader tabs hold open, and an event-log endpoint onto a Chirp App.  The
dispatcher worker is started and stopped by the app's lifecycle hooks.
``serve`` is the public entry point.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

from herd._errors import NotFoundError, ValidationError
from herd.config_loader import load_config
from herd.server.services import build_services

if TYPE_CHECKING:
    from chirp import App, Request

    from herd.config import HerdConfig
    from herd.server.services import TodoServices

TODOS_ENDPOINT = "/todos"
TODO_ENDPOINT = "/todos/{todo_id}"
STREAM_ENDPOINT = "/cable/todos"
EVENTS_ENDPOINT = "/__herd/events"


def _json_response(payload: object, status: int = 200) -> Any:
    from chirp.http.response import Response

    return Response(body=json.dumps(payload), status=status, content_type="application/json")


def _error_response(exc: ValidationError | NotFoundError) -> Any:
    if isinstance(exc, NotFoundError):
        return _json_response({"errors": [str(exc)]}, status=404)
    return _json_response({"errors": exc.errors}, status=422)


def _parse_id(raw: object) -> int | None:
    try:
        return int(str(raw))
    except ValueError:
        return None


async def _read_fields(request: Request) -> dict[str, Any]:
    """Read the JSON body, accepting either ``{...}`` or ``{"todo": {...}}``.

    Raises:
        ValidationError: If the body is not a JSON object.

    """
    try:
        body = await request.json()
    except ValueError as exc:
        msg = f"Request body is not valid JSON: {exc}"
        raise ValidationError(msg) from exc
    if isinstance(body, dict) and isinstance(body.get("todo"), dict):
        body = body["todo"]
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return {k: v for k, v in body.items() if k in ("title", "completed")}


def _wire_todo_routes(app: App, services: TodoServices) -> None:
    """Register list/create/update/delete handlers."""
    mutations = services.mutations

    async def list_todos(request: Request) -> Any:
        return _json_response({"todos": services.projection.get()})

    async def create_todo(request: Request) -> Any:
        try:
            fields = await _read_fields(request)
            item = mutations.create(
                fields.get("title", ""), completed=bool(fields.get("completed", False))
            )
        except ValidationError as exc:
            return _error_response(exc)
        return _json_response(item, status=201)

    async def update_todo(request: Request, todo_id: str) -> Any:
        item_id = _parse_id(todo_id)
        if item_id is None:
            return _error_response(NotFoundError(-1))
        try:
            fields = await _read_fields(request)
            item = mutations.update(
                item_id, title=fields.get("title"), completed=fields.get("completed")
            )
        except (ValidationError, NotFoundError) as exc:
            return _error_response(exc)
        return _json_response(item)

    async def delete_todo(request: Request, todo_id: str) -> Any:
        item_id = _parse_id(todo_id)
        if item_id is None:
            return _error_response(NotFoundError(-1))
        try:
            item = mutations.delete(item_id)
        except NotFoundError as exc:
            return _error_response(exc)
        return _json_response(item)

    app.route(TODOS_ENDPOINT, methods=["GET"], name="todos:index")(list_todos)
    app.route(TODOS_ENDPOINT, methods=["POST"], name="todos:create")(create_todo)
    app.route(TODO_ENDPOINT, methods=["PATCH", "PUT"], name="todos:update")(update_todo)
    app.route(TODO_ENDPOINT, methods=["DELETE"], name="todos:destroy")(delete_todo)


def _wire_stream_endpoint(app: App, services: TodoServices) -> None:
    """Register the ``todos`` SSE stream.

    Each connection is one subscription: the current list is sent first,
    then every broadcast, each as an SSE event named ``todos`` whose data
    is ``{"todos": [...]}``.

    """
    from chirp import EventStream, SSEEvent

    channel = services.channel

    async def todos_stream(request: Request) -> Any:
        client_id = request.query.get("client_id") or None
        sub = channel.subscribe(client_id)

        async def generate():  # type: ignore[no-untyped-def]
            try:
                async for message in channel.stream(sub):
                    yield SSEEvent(data=json.dumps(message), event=channel.topic)
            finally:
                channel.unsubscribe(sub)

        return EventStream(generate())

    app.route(STREAM_ENDPOINT, name="todos:stream")(todos_stream)


def _wire_events_endpoint(app: App, services: TodoServices) -> None:
    """Register the ``/__herd/events`` JSON endpoint (event log summary).

    ``?tab=<id>`` narrows ``recent`` to one tab or subscriber; ``?limit=`` caps it.
    """
    from herd.observability.log import format_event

    async def events_handler(request: Request) -> Any:
        log = services.collector.log
        limit = _parse_id(request.query.get("limit", "50")) or 50
        events = log.query(tab_id=request.query.get("tab") or None, limit=limit)
        return _json_response(
            {
                "event_log": log.stats(),
                "recent": [format_event(e) for e in reversed(events)],
                "subscribers": services.broadcaster.subscriber_count,
                "pending_broadcasts": services.dispatcher.pending,
            }
        )

    app.route(EVENTS_ENDPOINT, name="herd:events")(events_handler)


def _wire_lifecycle(app: App, services: TodoServices) -> None:
    """Start the broadcast worker with the app and stop it on shutdown."""

    @app.on_startup
    async def _start_services() -> None:
        await services.start()

    @app.on_shutdown
    async def _stop_services() -> None:
        await services.stop()


def create_app(config: HerdConfig, services: TodoServices, *, debug: bool = False) -> App:
    """Create a Chirp App exposing ``services`` over HTTP."""
    from chirp import App, AppConfig

    app = App(config=AppConfig(debug=debug, host=config.host, port=config.port))
    _wire_todo_routes(app, services)
    _wire_stream_endpoint(app, services)
    _wire_events_endpoint(app, services)
    _wire_lifecycle(app, services)
    return app


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def serve(root: str | Path = ".", **kwargs: object) -> None:
    """Run the todo server under Pounce.

    Args:
        root: Directory holding an optional ``herd.yaml`` / ``herd.toml``.
        **kwargs: Override HerdConfig fields.

    """
    from herd.banner import print_banner

    config = load_config(Path(root), **kwargs)
    t0 = time.perf_counter()

    services = build_services(config)
    app = create_app(config, services)

    load_ms = (time.perf_counter() - t0) * 1000
    print_banner(config, mode="serve", load_ms=load_ms)

    # Pounce connection events land in the same EventLog as pipeline events.
    app.run(host=config.host, port=config.port, lifecycle_collector=services.collector)
