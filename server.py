"""Waymark Web Server - JSON API for trips, expenses and the AI assistants."""

import json
import os
import re
import traceback
from pathlib import Path
from http.server import HTTPServer, SimpleHTTPRequestHandler
from urllib.parse import urlparse

# Add agents to path
import sys
sys.path.insert(0, str(Path(__file__).parent))

from agents.extract import extract_expense_handler, extract_trip_handler
from agents.flights import flight_status_handler
from agents.billing import SubscriptionCache, subscription_check_handler
from agents.gcal import calendar_oauth_handler, calendar_sync_handler, refresh_token_handler
from agents.reports import build_expense_report, report_filename
from agents.common.errors import ValidationError
from agents.common.validation import validate_profile

# Import authentication and database
import auth
import database as db

# Built frontend assets, if any, are served from here
STATIC_DIR = Path(os.environ.get("STATIC_DIR", Path(__file__).parent / "static"))

# Cached subscription status is rechecked once it is older than this many seconds
SUBSCRIPTION_MAX_AGE = 60

TRIP_ROUTE = re.compile(r"^/api/trips/(?P<trip_id>[0-9a-fA-F-]{36})(?:/(?P<action>[\w.]+))?/?$")
EXPENSE_ROUTE = re.compile(r"^/api/expenses/(?P<row_id>[0-9a-fA-F-]{36})/(?P<action>update|delete)/?$")
ITINERARY_ROUTE = re.compile(r"^/api/itinerary/(?P<row_id>[0-9a-fA-F-]{36})/(?P<action>update|delete)/?$")


class WaymarkHandler(SimpleHTTPRequestHandler):
    """HTTP request handler for the Waymark API."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, directory=str(STATIC_DIR), **kwargs)

    def get_session_token(self):
        return auth.token_from_cookies(self.headers.get('Cookie'))

    def current_session(self):
        """The signed-in session, or None. With auth disabled everyone is the default admin."""
        if not auth.is_auth_enabled():
            return auth.local_session()
        return auth.sessions.get(self.get_session_token())

    def get_request_origin(self) -> str:
        """Origin of the page that made the request, used for OAuth redirects."""
        origin = self.headers.get('Origin')
        if origin:
            return origin.rstrip('/')
        referer = self.headers.get('Referer')
        if referer:
            return "/".join(referer.split("/")[:3])
        scheme = self.headers.get('X-Forwarded-Proto', 'http')
        return f"{scheme}://{self.headers.get('Host', 'localhost')}"

    def read_json_body(self):
        """Parse the JSON request body. Sends a 400 and returns None when it is not valid JSON."""
        try:
            content_length = int(self.headers.get('Content-Length', 0))
            body = self.rfile.read(content_length) if content_length else b""
            data = json.loads(body.decode('utf-8')) if body else {}
        except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
            self.send_json_error("Invalid JSON in request body")
            return None
        if not isinstance(data, dict):
            self.send_json_error("Request body must be a JSON object")
            return None
        return data

    def do_GET(self):
        """Handle GET requests - API reads and static files."""
        parsed = urlparse(self.path)
        path = parsed.path

        if not path.startswith("/api/"):
            super().do_GET()
            return

        session = self.current_session()
        if session is None:
            self.send_json_error("Authentication required", status=401)
            return

        user_id = session.user_id

        if path in ("/api/trips", "/api/trips/"):
            self.send_json_response({"success": True, "trips": db.get_user_trips(user_id)})
            return

        if path == "/api/profile":
            self.handle_get_profile(session)
            return

        match = TRIP_ROUTE.match(path)
        if match:
            trip_id, action = match.group("trip_id"), match.group("action")
            if action is None:
                self.handle_get_trip(user_id, trip_id)
            elif action == "expenses":
                self.send_json_response({"success": True, "expenses": db.get_trip_expenses(user_id, trip_id)})
            elif action == "itinerary":
                self.send_json_response({"success": True, "items": db.get_trip_itinerary(user_id, trip_id)})
            elif action == "report.pdf":
                self.handle_expense_report(user_id, trip_id)
            else:
                self.send_json_error("Not Found", status=404)
            return

        self.send_json_error("Not Found", status=404)

    def do_POST(self):
        """Handle POST requests (auth, assistants, integrations and row writes)."""
        path = urlparse(self.path).path

        # Auth endpoints (no auth required)
        if path == "/api/login":
            self.handle_login()
            return
        elif path == "/api/register":
            self.handle_register()
            return
        elif path == "/api/logout":
            self.handle_logout()
            return

        # Check authentication for all other POST endpoints
        session = self.current_session()
        if session is None:
            self.send_json_error("Authentication required", status=401)
            return

        data = self.read_json_body()
        if data is None:
            return
        user_id = session.user_id

        if path == "/api/extract/trip":
            self.send_handler_result(extract_trip_handler(data))
        elif path == "/api/extract/expense":
            self.send_handler_result(extract_expense_handler(data))
        elif path == "/api/flight-status":
            self.send_handler_result(flight_status_handler(data))
        elif path == "/api/subscription/check":
            self.handle_subscription_check(session)
        elif path == "/api/profile/update":
            self.handle_update_profile(user_id, data)
        elif path == "/api/calendar/oauth":
            self.send_handler_result(calendar_oauth_handler(user_id, data, self.get_request_origin()))
        elif path == "/api/calendar/refresh-token":
            self.send_handler_result(refresh_token_handler(user_id))
        elif path == "/api/calendar/sync":
            self.send_handler_result(calendar_sync_handler(user_id, data))
        elif path in ("/api/trips", "/api/trips/"):
            self.handle_create_trip(user_id, data)
        elif path in ("/api/expenses", "/api/expenses/"):
            self.handle_create_row(db.add_expense, user_id, data, "expense_id")
        elif path in ("/api/itinerary", "/api/itinerary/"):
            self.handle_create_row(db.add_itinerary_item, user_id, data, "item_id")
        elif TRIP_ROUTE.match(path) and TRIP_ROUTE.match(path).group("action") in ("update", "delete"):
            match = TRIP_ROUTE.match(path)
            if match.group("action") == "update":
                self.handle_update_trip(user_id, match.group("trip_id"), data)
            else:
                self.handle_delete_trip(user_id, match.group("trip_id"))
        elif EXPENSE_ROUTE.match(path):
            match = EXPENSE_ROUTE.match(path)
            if match.group("action") == "update":
                self.handle_row_write(lambda: db.update_expense(user_id, match.group("row_id"), data),
                                      "Expense not found")
            else:
                self.handle_row_write(lambda: db.delete_expense(user_id, match.group("row_id")),
                                      "Expense not found")
        elif ITINERARY_ROUTE.match(path):
            match = ITINERARY_ROUTE.match(path)
            if match.group("action") == "update":
                self.handle_row_write(lambda: db.update_itinerary_item(user_id, match.group("row_id"), data),
                                      "Itinerary item not found")
            else:
                self.handle_row_write(lambda: db.delete_itinerary_item(user_id, match.group("row_id")),
                                      "Itinerary item not found")
        else:
            self.send_json_error("Not Found", status=404)

    def handle_login(self):
        data = self.read_json_body()
        if data is None:
            return

        username = (data.get('username') or '').strip()
        password = data.get('password') or ''
        if not username or not password:
            self.send_json_error("Username and password required")
            return

        session = auth.login(username, password)
        if session is None:
            self.send_json_error("Invalid username or password", status=401)
            return

        # Secure cookie only when behind HTTPS
        secure = self.headers.get('X-Forwarded-Proto') == 'https'
        self.send_json_response(
            {"success": True, "username": session.username, "is_admin": session.is_admin},
            headers={'Set-Cookie': auth.session_cookie(session, secure=secure)},
        )

    def handle_register(self):
        data = self.read_json_body()
        if data is None:
            return
        try:
            auth.register_user(
                (data.get('username') or '').strip(),
                (data.get('email') or '').strip(),
                data.get('password') or '',
                full_name=(data.get('full_name') or '').strip() or None,
            )
        except ValidationError as e:
            self.send_json_error(e.message, status=e.status)
            return
        self.send_json_response({"success": True})

    def handle_logout(self):
        session = auth.sessions.close(self.get_session_token())
        if session:
            self.server_subscriptions().forget(session.user_id)
            print(f"[AUTH] Logout: {session.username}")
        self.send_json_response({"success": True}, headers={'Set-Cookie': auth.session_cookie(None)})

    def handle_get_profile(self, session):
        profile = db.get_profile(session.user_id) or {}
        # Tokens stay server-side
        profile.pop("google_access_token", None)
        subscription = self.server_subscriptions().get(session.user_id).to_dict()
        self.send_json_response({"success": True, "profile": profile, "subscription": subscription})

    def handle_update_profile(self, user_id: int, data: dict):
        try:
            updates = validate_profile(data)
        except ValidationError as e:
            self.send_json_error(e.message, status=e.status)
            return
        db.update_profile(user_id, updates)
        profile = db.get_profile(user_id) or {}
        profile.pop("google_access_token", None)
        self.send_json_response({"success": True, "profile": profile})

    def handle_get_trip(self, user_id: int, trip_id: str):
        trip = db.get_trip(user_id, trip_id)
        if not trip:
            self.send_json_error("Trip not found", status=404)
            return
        self.send_json_response({"success": True, "trip": trip})

    def handle_subscription_check(self, session):
        # An explicit check replaces whatever was cached
        self.server_subscriptions().forget(session.user_id)
        self.send_handler_result(subscription_check_handler(session.user()))

    def server_subscriptions(self) -> SubscriptionCache:
        """Subscription cache owned by the running server."""
        return self.server.subscriptions

    def handle_create_trip(self, user_id: int, data: dict):
        try:
            trip_id = db.create_trip(user_id, data)
        except ValidationError as e:
            self.send_json_error(e.message, status=e.status)
            return
        print(f"[DB] Created trip {trip_id} for user {user_id}")
        self.sync_calendar_quietly(user_id, trip_id, "create")
        self.send_json_response({"success": True, "trip_id": trip_id})

    def handle_update_trip(self, user_id: int, trip_id: str, data: dict):
        try:
            updated = db.update_trip(user_id, trip_id, data)
        except ValidationError as e:
            self.send_json_error(e.message, status=e.status)
            return
        if not updated:
            self.send_json_error("Trip not found", status=404)
            return
        self.sync_calendar_quietly(user_id, trip_id, "update")
        self.send_json_response({"success": True, "message": "Trip updated successfully"})

    def handle_delete_trip(self, user_id: int, trip_id: str):
        # Remove the calendar event while the stored event id still exists
        self.sync_calendar_quietly(user_id, trip_id, "delete")
        if not db.delete_trip(user_id, trip_id):
            self.send_json_error("Trip not found", status=404)
            return
        self.send_json_response({"success": True, "message": "Trip deleted"})

    def handle_create_row(self, add_row, user_id: int, data: dict, id_key: str):
        try:
            row_id = add_row(user_id, data)
        except ValidationError as e:
            self.send_json_error(e.message, status=e.status)
            return
        if row_id is None:
            self.send_json_error("Trip not found", status=404)
            return
        self.send_json_response({"success": True, id_key: row_id})

    def handle_row_write(self, write, not_found: str):
        try:
            changed = write()
        except ValidationError as e:
            self.send_json_error(e.message, status=e.status)
            return
        if not changed:
            self.send_json_error(not_found, status=404)
            return
        self.send_json_response({"success": True})

    def handle_expense_report(self, user_id: int, trip_id: str):
        """Stream the trip's expense report as a PDF download."""
        trip = db.get_trip(user_id, trip_id)
        if not trip:
            self.send_json_error("Trip not found", status=404)
            return
        try:
            expenses = db.get_trip_expenses(user_id, trip_id)
            profile = db.get_profile(user_id) or {}
            pdf = build_expense_report(trip, expenses, company_name=profile.get("company_name"))
        except Exception as e:
            traceback.print_exc()
            self.send_json_error(f"Failed to build report: {e}", status=500)
            return

        self.send_response(200)
        self.send_header('Content-Type', 'application/pdf')
        self.send_header('Content-Disposition', f'attachment; filename="{report_filename(trip.get("trip_name"))}"')
        self.send_header('Content-Length', str(len(pdf)))
        self.end_headers()
        self.wfile.write(pdf)

    def sync_calendar_quietly(self, user_id: int, trip_id: str, action: str):
        """Mirror a trip write to Google Calendar when the user has it connected.

        Calendar failures are logged and never fail the trip write itself.
        """
        profile = db.get_profile(user_id)
        if not profile or not profile.get("google_calendar_connected"):
            return
        result, status = calendar_sync_handler(user_id, {"tripId": trip_id, "action": action})
        if status != 200:
            print(f"[GCAL] Background sync for trip {trip_id} failed ({status}): {result.get('error')}")

    def send_handler_result(self, result):
        """Send a (payload, status) tuple returned by an agent handler."""
        payload, status = result
        self.send_json_response(payload, status=status)

    def send_json_response(self, data: dict, status: int = 200, headers: dict = None):
        """Send JSON response."""
        body = json.dumps(data, default=str).encode()
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Content-Length', str(len(body)))
        for name, value in (headers or {}).items():
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(body)

    def send_json_error(self, message: str, status: int = 400):
        """Send JSON error response."""
        self.send_json_response({"success": False, "error": message}, status=status)


class WaymarkServer(HTTPServer):
    """HTTP server that owns the per-process state its handlers share."""

    def __init__(self, server_address, handler_class=WaymarkHandler, subscriptions=None):
        super().__init__(server_address, handler_class)
        if subscriptions is None:
            subscriptions = SubscriptionCache(max_age=SUBSCRIPTION_MAX_AGE)
        self.subscriptions = subscriptions


def initialize_server():
    """Create tables and the default admin user."""
    db.init_db()
    auth.ensure_default_user()


def run_server(port: int = 8000):
    """Run the Waymark web server."""
    initialize_server()

    # Bind to 0.0.0.0 for cloud deployment
    server = WaymarkServer(('0.0.0.0', port))

    if auth.is_auth_enabled():
        auth_info = """
║   Authentication: ENABLED (database-backed)               ║
║   Default user: admin (set AUTH_USERNAME/AUTH_PASSWORD)   ║
║   Set AUTH_DISABLED=true to disable authentication        ║"""
    else:
        auth_info = """
║   Authentication: DISABLED                                ║
║   Set AUTH_DISABLED=false to enable authentication        ║"""

    print(f"""
╔═══════════════════════════════════════════════════════════╗
║                                                           ║
║   WAYMARK - Trips & Expenses                              ║
║                                                           ║
║   Server running at: http://localhost:{port:<5}              ║
║                                                           ║{auth_info}
║                                                           ║
║   Press Ctrl+C to stop                                    ║
║                                                           ║
╚═══════════════════════════════════════════════════════════╝
""")

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nServer stopped.")
        server.shutdown()


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser(description="Run the Waymark web server")
    parser.add_argument("-p", "--port", type=int, default=None, help="Port to run on (default: 8000)")
    args = parser.parse_args()

    # Use PORT env var, then --port arg, then default 8000
    port = args.port or int(os.environ.get("PORT", 8000))
    run_server(port)
