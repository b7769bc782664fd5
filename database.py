"""Database module: users, profiles, trips, expenses and itinerary items."""

import os
import uuid
import bcrypt
from datetime import datetime
from typing import Optional, List, Dict, Any
from contextlib import contextmanager

# Always import sqlite3 for local dev fallback
import sqlite3

# Try to import psycopg2 for production
try:
    import psycopg2
    import psycopg2.extras
    HAS_POSTGRES = True
except ImportError:
    HAS_POSTGRES = False

from agents.common.validation import validate_expense, validate_itinerary_item, validate_trip

# Database URL from environment (hosted deployments set this)
DATABASE_URL = os.environ.get("DATABASE_URL")

# Use PostgreSQL if available, otherwise SQLite for local development
USE_POSTGRES = HAS_POSTGRES and DATABASE_URL is not None

# SQLite file for local development
DB_PATH = os.environ.get("DATABASE_PATH", os.path.join(os.path.dirname(__file__), "waymark.db"))

TRIP_COLUMNS = [
    "trip_name", "city", "country", "beginning_date", "ending_date", "client_or_event",
    "fee", "expenses_reimbursable", "invoice_number", "internal_notes",
    "flight_needed", "airline", "flight_number", "departure_time", "arrival_time",
    "flight_confirmation", "return_airline", "return_flight_number",
    "return_departure_time", "return_arrival_time", "return_flight_confirmation",
    "hotel_needed", "hotel_name", "hotel_address", "hotel_booking_service",
    "hotel_checkin_date", "hotel_checkout_date", "hotel_confirmation",
    "car_needed", "car_rental_company", "car_pickup_location", "car_dropoff_location",
    "car_booking_service", "car_pickup_datetime", "car_dropoff_datetime", "car_confirmation",
    "google_calendar_event_id",
]

EXPENSE_COLUMNS = [
    "trip_id", "date", "merchant", "category", "amount", "currency", "payment_method",
    "description", "notes", "reimbursable", "receipt_url",
]

ITINERARY_COLUMNS = [
    "trip_id", "date", "start_time", "end_time", "item_type", "title", "description",
    "location_name", "address", "confirmation_number", "booking_link", "notes",
]

PROFILE_COLUMNS = [
    "full_name", "company_name", "company_logo_path",
    "subscription_tier", "subscription_status", "stripe_customer_id",
    "stripe_subscription_id", "subscription_end_date",
    "google_calendar_connected", "google_access_token", "google_token_expires_at",
]

BOOLEAN_COLUMNS = {
    "expenses_reimbursable", "flight_needed", "hotel_needed", "car_needed",
    "reimbursable", "google_calendar_connected", "is_admin",
}

NUMERIC_COLUMNS = {"fee", "amount"}


def get_connection():
    """Get a database connection."""
    if USE_POSTGRES:
        # Some hosts hand out postgres:// but psycopg2 needs postgresql://
        url = DATABASE_URL
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        return psycopg2.connect(url, cursor_factory=psycopg2.extras.RealDictCursor)
    else:
        # SQLite for local development
        conn = sqlite3.connect(DB_PATH)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn


@contextmanager
def get_db():
    """Context manager for database connections."""
    conn = get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _sql(query: str) -> str:
    """Queries are written with ? placeholders; psycopg2 wants %s."""
    return query.replace("?", "%s") if USE_POSTGRES else query


def _row(row) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    data = dict(row)
    for key, value in data.items():
        if key in BOOLEAN_COLUMNS and value is not None:
            data[key] = bool(value)
        elif key in NUMERIC_COLUMNS and value is not None:
            data[key] = float(value)
    return data


def _column_type(column: str, postgres: bool) -> str:
    if column in BOOLEAN_COLUMNS:
        return "BOOLEAN" if postgres else "INTEGER"
    if column in NUMERIC_COLUMNS:
        return "NUMERIC(12, 2)" if postgres else "REAL"
    return "TEXT"


def _columns_ddl(columns: List[str]) -> str:
    return ",\n".join(f"    {c} {_column_type(c, USE_POSTGRES)}" for c in columns)


def init_db():
    """Initialize database tables."""
    id_column = "SERIAL PRIMARY KEY" if USE_POSTGRES else "INTEGER PRIMARY KEY AUTOINCREMENT"
    boolean_false = "BOOLEAN DEFAULT FALSE" if USE_POSTGRES else "INTEGER DEFAULT 0"

    with get_db() as conn:
        cursor = conn.cursor()

        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS users (
                id {id_column},
                username TEXT UNIQUE NOT NULL,
                email TEXT UNIQUE NOT NULL,
                password_hash TEXT NOT NULL,
                is_admin {boolean_false},
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS profiles (
                user_id INTEGER PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
{_columns_ddl(PROFILE_COLUMNS)}
            )
        """)

        # Refresh tokens live apart from the profile row that the client can read
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS user_google_tokens (
                user_id INTEGER PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
                google_refresh_token TEXT NOT NULL
            )
        """)

        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS trips (
                trip_id TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
{_columns_ddl(TRIP_COLUMNS)},
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS expenses (
                expense_id TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
{_columns_ddl(EXPENSE_COLUMNS)},
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS itinerary_items (
                item_id TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
{_columns_ddl(ITINERARY_COLUMNS)},
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_trips_user_id ON trips(user_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_expenses_trip_id ON expenses(trip_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_itinerary_trip_id ON itinerary_items(trip_id)")

        print(f"[DB] Initialized {'PostgreSQL' if USE_POSTGRES else 'SQLite'} database")


# ============ User Functions ============

def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash."""
    return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))


def create_user(username: str, email: str, password: str, is_admin: bool = False) -> Optional[int]:
    """Create a new user and an empty free-tier profile. Returns user ID or None if failed."""
    password_hash = hash_password(password)

    with get_db() as conn:
        cursor = conn.cursor()
        try:
            if USE_POSTGRES:
                cursor.execute(
                    "INSERT INTO users (username, email, password_hash, is_admin) VALUES (%s, %s, %s, %s) RETURNING id",
                    (username, email, password_hash, is_admin)
                )
                user_id = cursor.fetchone()["id"]
            else:
                cursor.execute(
                    "INSERT INTO users (username, email, password_hash, is_admin) VALUES (?, ?, ?, ?)",
                    (username, email, password_hash, int(is_admin))
                )
                user_id = cursor.lastrowid
            cursor.execute(
                _sql("INSERT INTO profiles (user_id, subscription_tier) VALUES (?, ?)"),
                (user_id, "free")
            )
            return user_id
        except Exception as e:
            print(f"[DB] Error creating user: {e}")
            return None


def get_user_by_username(username: str) -> Optional[Dict[str, Any]]:
    """Get user by username."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            _sql("SELECT id, username, email, password_hash, is_admin FROM users WHERE username = ?"),
            (username,)
        )
        return _row(cursor.fetchone())


def get_user_by_id(user_id: int) -> Optional[Dict[str, Any]]:
    """Get user by ID."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(_sql("SELECT id, username, email, is_admin FROM users WHERE id = ?"), (user_id,))
        return _row(cursor.fetchone())


def authenticate_user(username: str, password: str) -> Optional[Dict[str, Any]]:
    """Authenticate user and return user dict if successful."""
    user = get_user_by_username(username)
    if user and verify_password(password, user["password_hash"]):
        del user["password_hash"]  # Don't return the hash
        return user
    return None


def username_exists(username: str) -> bool:
    """Check if username already exists."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(_sql("SELECT 1 FROM users WHERE username = ?"), (username,))
        return cursor.fetchone() is not None


def email_exists(email: str) -> bool:
    """Check if email already exists."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(_sql("SELECT 1 FROM users WHERE email = ?"), (email,))
        return cursor.fetchone() is not None


# ============ Profile Functions ============

def get_profile(user_id: int) -> Optional[Dict[str, Any]]:
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(_sql("SELECT * FROM profiles WHERE user_id = ?"), (user_id,))
        return _row(cursor.fetchone())


def update_profile(user_id: int, updates: Dict[str, Any]) -> bool:
    """Update profile columns, creating the profile row if needed."""
    fields = [f for f in PROFILE_COLUMNS if f in updates]
    if not fields:
        return False

    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(_sql("SELECT 1 FROM profiles WHERE user_id = ?"), (user_id,))
        if cursor.fetchone() is None:
            cursor.execute(_sql("INSERT INTO profiles (user_id) VALUES (?)"), (user_id,))

        set_clause = ", ".join(f"{f} = ?" for f in fields)
        values = [updates[f] for f in fields] + [user_id]
        cursor.execute(_sql(f"UPDATE profiles SET {set_clause} WHERE user_id = ?"), values)
        return cursor.rowcount > 0


def get_refresh_token(user_id: int) -> Optional[str]:
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(_sql("SELECT google_refresh_token FROM user_google_tokens WHERE user_id = ?"), (user_id,))
        row = cursor.fetchone()
        return row["google_refresh_token"] if row else None


def store_refresh_token(user_id: int, refresh_token: str) -> None:
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(_sql("DELETE FROM user_google_tokens WHERE user_id = ?"), (user_id,))
        cursor.execute(
            _sql("INSERT INTO user_google_tokens (user_id, google_refresh_token) VALUES (?, ?)"),
            (user_id, refresh_token)
        )


# ============ Generic row helpers ============

def _insert(table: str, id_column: str, columns: List[str], user_id: int, data: Dict[str, Any]) -> str:
    row_id = str(uuid.uuid4())
    fields = [c for c in columns if c in data]
    names = ", ".join([id_column, "user_id"] + fields)
    placeholders = ", ".join(["?"] * (len(fields) + 2))
    values = [row_id, user_id] + [data[f] for f in fields]
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(_sql(f"INSERT INTO {table} ({names}) VALUES ({placeholders})"), values)
    return row_id


def _update(table: str, id_column: str, columns: List[str], user_id: int,
            row_id: str, updates: Dict[str, Any]) -> bool:
    fields = [c for c in columns if c in updates]
    if not fields:
        return False
    set_clause = ", ".join(f"{f} = ?" for f in fields)
    values = [updates[f] for f in fields] + [row_id, user_id]
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            _sql(f"UPDATE {table} SET {set_clause} WHERE {id_column} = ? AND user_id = ?"), values
        )
        return cursor.rowcount > 0


def _delete(table: str, id_column: str, user_id: int, row_id: str) -> bool:
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(_sql(f"DELETE FROM {table} WHERE {id_column} = ? AND user_id = ?"), (row_id, user_id))
        return cursor.rowcount > 0


# ============ Trip Functions ============

def create_trip(user_id: int, data: Dict[str, Any]) -> str:
    """Validate and insert a trip. Returns the new trip_id."""
    return _insert("trips", "trip_id", TRIP_COLUMNS, user_id, validate_trip(data))


def get_trip(user_id: int, trip_id: str) -> Optional[Dict[str, Any]]:
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(_sql("SELECT * FROM trips WHERE trip_id = ? AND user_id = ?"), (trip_id, user_id))
        return _row(cursor.fetchone())


def get_user_trips(user_id: int) -> List[Dict[str, Any]]:
    """Get all trips for a user, most recent start date first."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            _sql("SELECT * FROM trips WHERE user_id = ? ORDER BY beginning_date DESC"), (user_id,)
        )
        return [_row(r) for r in cursor.fetchall()]


def update_trip(user_id: int, trip_id: str, updates: Dict[str, Any]) -> bool:
    return _update("trips", "trip_id", TRIP_COLUMNS, user_id, trip_id, validate_trip(updates, partial=True))


def set_trip_calendar_event(user_id: int, trip_id: str, event_id: Optional[str]) -> bool:
    return _update("trips", "trip_id", TRIP_COLUMNS, user_id, trip_id,
                   {"google_calendar_event_id": event_id})


def delete_trip(user_id: int, trip_id: str) -> bool:
    """Delete a trip with its expenses and itinerary items."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(_sql("DELETE FROM expenses WHERE trip_id = ? AND user_id = ?"), (trip_id, user_id))
        cursor.execute(_sql("DELETE FROM itinerary_items WHERE trip_id = ? AND user_id = ?"), (trip_id, user_id))
        cursor.execute(_sql("DELETE FROM trips WHERE trip_id = ? AND user_id = ?"), (trip_id, user_id))
        return cursor.rowcount > 0


# ============ Expense Functions ============

def add_expense(user_id: int, data: Dict[str, Any]) -> Optional[str]:
    """Validate and insert an expense. Returns None when the trip is not the user's."""
    data = validate_expense(data)
    if not get_trip(user_id, data["trip_id"]):
        return None
    data.setdefault("currency", "USD")
    return _insert("expenses", "expense_id", EXPENSE_COLUMNS, user_id, data)


def get_trip_expenses(user_id: int, trip_id: str) -> List[Dict[str, Any]]:
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            _sql("SELECT * FROM expenses WHERE trip_id = ? AND user_id = ? ORDER BY date ASC"),
            (trip_id, user_id)
        )
        return [_row(r) for r in cursor.fetchall()]


def update_expense(user_id: int, expense_id: str, updates: Dict[str, Any]) -> bool:
    return _update("expenses", "expense_id", EXPENSE_COLUMNS, user_id, expense_id,
                   validate_expense(updates, partial=True))


def delete_expense(user_id: int, expense_id: str) -> bool:
    return _delete("expenses", "expense_id", user_id, expense_id)


# ============ Itinerary Functions ============

def add_itinerary_item(user_id: int, data: Dict[str, Any]) -> Optional[str]:
    data = validate_itinerary_item(data)
    if not get_trip(user_id, data["trip_id"]):
        return None
    return _insert("itinerary_items", "item_id", ITINERARY_COLUMNS, user_id, data)


def get_trip_itinerary(user_id: int, trip_id: str) -> List[Dict[str, Any]]:
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            _sql("""
                SELECT * FROM itinerary_items WHERE trip_id = ? AND user_id = ?
                ORDER BY date ASC, start_time ASC
            """),
            (trip_id, user_id)
        )
        return [_row(r) for r in cursor.fetchall()]


def update_itinerary_item(user_id: int, item_id: str, updates: Dict[str, Any]) -> bool:
    return _update("itinerary_items", "item_id", ITINERARY_COLUMNS, user_id, item_id,
                   validate_itinerary_item(updates, partial=True))


def delete_itinerary_item(user_id: int, item_id: str) -> bool:
    return _delete("itinerary_items", "item_id", user_id, item_id)


def token_expired(expires_at: Optional[str], now: Optional[datetime] = None) -> bool:
    """True when a stored ISO expiry timestamp is missing or in the past."""
    if not expires_at:
        return True
    try:
        expiry = datetime.fromisoformat(expires_at.replace("Z", "+00:00"))
    except ValueError:
        return True
    now = now or datetime.now(expiry.tzinfo)
    return expiry <= now
