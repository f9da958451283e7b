import enum
import logging
import secrets
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Callable
from urllib.parse import urlparse

from freetser import (
    Request,
    Response,
    TcpServerConfig,
    setup_logging,
    start_server,
    start_storage_thread,
)
from freetser.server import StorageQueue

from memberdir.data import DB_TABLES
from memberdir.handlers.birthdays import birthdays_handler
from memberdir.handlers.cron import birthday_notifications_handler
from memberdir.handlers.members import (
    create_member_handler,
    delete_member_handler,
    get_member_handler,
    get_picture_handler,
    list_members_handler,
    update_member_handler,
    upload_picture_handler,
)
from memberdir.settings import Settings, load_settings_from_env, parse_args

logger = logging.getLogger("memberdir.app")


class Permissions:
    ADMIN = "admin"
    CRON = "cron"


class PermissionMode(enum.Enum):
    """Mode for permission checking on routes."""

    PUBLIC = enum.auto()  # No authentication needed
    DENY_ALL = enum.auto()  # Restrictive default - denies all access
    REQUIRE_PERMISSIONS = enum.auto()  # Check specific permissions


@dataclass(frozen=True)
class PermissionConfig:
    mode: PermissionMode
    permissions: frozenset[str] = frozenset()

    @staticmethod
    def public() -> "PermissionConfig":
        return PermissionConfig(PermissionMode.PUBLIC)

    @staticmethod
    def deny_all() -> "PermissionConfig":
        return PermissionConfig(PermissionMode.DENY_ALL)

    @staticmethod
    def require(*permissions: str) -> "PermissionConfig":
        """Require one or more specific permissions (caller must have ALL of them)."""
        if not permissions:
            raise ValueError("Must specify at least one permission")
        return PermissionConfig(
            PermissionMode.REQUIRE_PERMISSIONS, frozenset(permissions)
        )


@dataclass
class RouteEntry:
    """
    Stores the handler of a particular route and some other configuration.
    """

    handler: Callable[[], Response]
    # Default is DENY_ALL (forces explicit permission configuration)
    permission: PermissionConfig = field(default_factory=PermissionConfig.deny_all)
    # If yes, then we add special headers so that browsers are able to send
    # credentials along (automatically true for permission-protected routes)
    requires_credentials: bool = False

    def needs_credentials(self) -> bool:
        if self.requires_credentials:
            return True
        if self.permission.mode == PermissionMode.REQUIRE_PERMISSIONS:
            return True
        return False


@dataclass
class RouteData:
    entry: RouteEntry
    method: str
    path: str


@dataclass
class AppContext:
    """Everything the request handlers need besides the request itself."""

    settings: Settings
    # Evaluation instant for birthday computations, replaceable in tests
    clock: Callable[[], datetime] = datetime.now

    def today(self) -> date:
        return self.clock().date()

    def permission_secrets(self) -> dict[str, str | None]:
        return {
            Permissions.ADMIN: self.settings.admin_token,
            Permissions.CRON: self.settings.cron_secret,
        }


def parse_headers(req_headers: list[tuple[bytes, bytes]]) -> dict[str, str]:
    """Parse request headers into a dict. If header keys occur multiple times, we
    use only the last one."""
    headers: dict[str, str] = {}
    try:
        for header_name, header_value in req_headers:
            headers[header_name.lower().decode("utf-8")] = header_value.decode("utf-8")
    except ValueError:
        # In case there is non-utf-8
        logger.debug("Received request with non-utf-8 headers.")
    return headers


def get_bearer_token(headers: dict[str, str]) -> str | None:
    """Token from an `Authorization: Bearer <token>` header."""
    authorization = headers.get("authorization")
    if authorization is None:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def check_access(
    route: RouteData,
    headers: dict[str, str],
    permission_secrets: dict[str, str | None],
) -> Response | None:
    """Check if the request has permission to access the route.

    Each permission is granted by presenting its configured secret as bearer
    token. Returns None if access is granted, or a Response with an error.
    """
    if route.entry.permission.mode == PermissionMode.DENY_ALL:
        raise ValueError(f"Route not configured: {route.method} {route.path}")

    if route.entry.permission.mode == PermissionMode.PUBLIC:
        return None

    required = route.entry.permission.permissions

    for permission in sorted(required):
        if not permission_secrets.get(permission):
            logger.error(f"Permission '{permission}' has no secret configured")
            return Response.text(
                f"Server not configured for {permission} access", status_code=500
            )

    token = get_bearer_token(headers)
    if token is None:
        logger.warning(f"Access denied (no token): {route.method} {route.path}")
        return Response.text("Unauthorized: No token", status_code=401)

    missing = [
        permission
        for permission in sorted(required)
        if not secrets.compare_digest(
            token.encode("utf-8"), permission_secrets[permission].encode("utf-8")
        )
    ]
    if missing:
        logger.warning(f"Access denied ({', '.join(missing)}): {route.method} {route.path}")
        return Response.text("Unauthorized", status_code=401)

    logger.debug(f"Access granted: {route.method} {route.path}")
    return None


def handle_options_request(
    route: dict[str, RouteEntry],
    route_entry: RouteEntry,
    frontend_origin: str,
) -> Response:
    """Handle OPTIONS preflight requests for CORS."""
    allowed_methods = ", ".join(sorted(route.keys()))
    res_headers = [
        (b"Access-Control-Allow-Methods", allowed_methods.encode("utf-8")),
        (b"Allow", allowed_methods.encode("utf-8")),
        (b"Access-Control-Allow-Origin", frontend_origin.encode("utf-8")),
        (b"Access-Control-Allow-Headers", b"Content-Type, Authorization"),
    ]
    if route_entry.needs_credentials():
        res_headers.append((b"Access-Control-Allow-Credentials", b"true"))

    logger.debug("Returning OPTIONS request.")
    return Response(status_code=204, headers=res_headers, body=b"")


def handler_with_context(
    ctx: AppContext,
    req: Request,
    store_queue: StorageQueue | None,
) -> Response:
    """
    This function dispatches a request to a specific handler, based on the route. It
    also handles things like CORS (browsers are careful when making requests that are
    not the same 'origin', so different domain)
    """
    if store_queue is None:
        logger.error("Storage not available")
        return Response.text("Storage not available", status_code=500)

    settings = ctx.settings
    frontend_origin = settings.frontend_origin

    # Strip query string for route lookup (handlers can access full path via req.path)
    path = urlparse(req.path).path
    method = req.method

    headers = parse_headers(req.headers)

    def h_list_members():
        return list_members_handler(req, store_queue, ctx.today())

    def h_create_member():
        return create_member_handler(req, store_queue, ctx.today())

    def h_get_member():
        return get_member_handler(req, store_queue, ctx.today())

    def h_update_member():
        return update_member_handler(req, store_queue, ctx.today())

    def h_delete_member():
        return delete_member_handler(req, store_queue)

    def h_upload_picture():
        return upload_picture_handler(req, headers, store_queue, ctx.today())

    def h_get_picture():
        return get_picture_handler(req, store_queue)

    def h_birthdays():
        return birthdays_handler(store_queue, ctx.today(), settings.upcoming_days)

    def h_birthday_notifications():
        return birthday_notifications_handler(store_queue, settings, ctx.today())

    admin = PermissionConfig.require(Permissions.ADMIN)
    cron = PermissionConfig.require(Permissions.CRON)

    # This table maps each route to a specific handler (the RouteEntry)
    route_table = {
        "/members/": {
            "GET": RouteEntry(h_list_members, admin),
            "POST": RouteEntry(h_create_member, admin),
        },
        "/members/get/": {"GET": RouteEntry(h_get_member, admin)},
        "/members/update/": {"POST": RouteEntry(h_update_member, admin)},
        "/members/delete/": {"POST": RouteEntry(h_delete_member, admin)},
        "/members/picture/": {
            "GET": RouteEntry(h_get_picture, PermissionConfig.public()),
            "POST": RouteEntry(h_upload_picture, admin),
        },
        "/birthdays/": {"GET": RouteEntry(h_birthdays, admin)},
        # Called by the scheduler, which authenticates with the cron secret
        "/cron/birthday_notifications/": {
            "GET": RouteEntry(h_birthday_notifications, cron),
            "POST": RouteEntry(h_birthday_notifications, cron),
        },
    }

    route = route_table.get(path)
    if route is None:
        logger.info(f"Route not found: {method} {path}")
        return Response.text(f"Not Found: {method} {path}", status_code=404)

    # Preflight requests name the actual method in a special header
    if method == "OPTIONS":
        requested_method = headers.get("access-control-request-method")
    else:
        requested_method = method

    route_entry = None if requested_method is None else route.get(requested_method)
    if route_entry is None:
        logger.info(f"Method not supported: {method} {path}")
        return Response.text(f"Not Found: {method} {path}", status_code=404)

    # Handle OPTIONS preflight for CORS (before auth - preflight has no credentials)
    if method == "OPTIONS":
        return handle_options_request(route, route_entry, frontend_origin)

    if error := check_access(
        RouteData(entry=route_entry, method=method, path=path),
        headers,
        ctx.permission_secrets(),
    ):
        return error

    allow_origin_header = (
        b"Access-Control-Allow-Origin",
        frontend_origin.encode("utf-8"),
    )

    response = route_entry.handler()
    response.headers.append(allow_origin_header)
    if route_entry.needs_credentials():
        response.headers.append((b"Access-Control-Allow-Credentials", b"true"))
    return response


def run_with_settings(
    settings: Settings,
    ready_event: threading.Event | None = None,
    clock: Callable[[], datetime] | None = None,
):
    log_listener = setup_logging()
    log_listener.start()

    # Configure logging level based on debug_logs setting
    log_level = logging.DEBUG if settings.debug_logs else logging.INFO
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    # Also set handler levels (setup_logging may have set handlers with higher levels)
    for h in root_logger.handlers:
        h.setLevel(log_level)

    logger.info(
        f"Running with settings:\n\t- frontend_origin={settings.frontend_origin}"
        f"\n\t- debug_logs={settings.debug_logs}"
        f"\n\t- port={settings.port}"
        f"\n\t- upcoming_days={settings.upcoming_days}"
        f"\n\t- smtp_send={settings.smtp_send}"
    )
    if not settings.admin_token:
        logger.warning("No admin token configured, member routes are unavailable")
    if not settings.cron_secret:
        logger.warning("No cron secret configured, notifications route is unavailable")

    store_queue = start_storage_thread(
        db_file=str(settings.db_file),
        db_tables=DB_TABLES,
    )

    ctx = AppContext(settings=settings)
    if clock is not None:
        ctx.clock = clock

    def handler(req: Request, store_queue: StorageQueue | None) -> Response:
        return handler_with_context(ctx, req, store_queue)

    if ready_event is None:
        ready_event = threading.Event()

    config = TcpServerConfig(port=settings.port)

    try:
        start_server(config, handler, store_queue=store_queue, ready_event=ready_event)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        log_listener.stop()


def run():
    """Main entry point - parses args and runs with settings from env file."""
    args = parse_args()
    run_with_settings(load_settings_from_env(Path(args.env_file)))


def run_dev():
    """Run with .env.test settings."""
    run_with_settings(load_settings_from_env(Path(".env.test")))


if __name__ == "__main__":
    run()
