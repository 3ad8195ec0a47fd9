"""Hosted relational backend.

One engine is shared by the whole process. It is created lazily by
``connect()`` from the ``DATABASE_URL`` environment variable and is only
cached once a probe query has answered within ``CONNECT_TIMEOUT_SECONDS``.
There is no reconnect logic: once connected, a failing statement is reported
to the caller as a ``TransportError`` and never retried.
"""
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout

from sqlalchemy import (
    create_engine, MetaData, Table, Column, Integer, String, Text, Numeric, DateTime,
    ForeignKey, UniqueConstraint, Index, select, insert, update, delete, func, or_, text,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

import config
from app_logger import get_logger
from passwords import hash_password, check_password
from records import now, record_values, asset_values, is_unique_violation
from results import (
    Ok, DomainError, TransportError, ConfigurationError, ConnectionTimeout, InvalidRecord,
    ALREADY_EXISTS, IN_USE, INVALID_CREDENTIALS, not_found, access_denied, invalid,
)

logger = get_logger("remote_db")

metadata = MetaData()

# --- SCHEMA ---
teams = Table(
    'teams', metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('name', String(255), nullable=False),
    Column('description', Text),
    Column('created_at', DateTime, nullable=False),
    Column('updated_at', DateTime, nullable=False),
)

users = Table(
    'users', metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('email', String(255), nullable=False),
    Column('name', String(255), nullable=False),
    Column('password_hash', String(255)),
    Column('company', String(255)),
    Column('photo', Text),
    Column('team_id', Integer, ForeignKey('teams.id', ondelete='SET NULL')),
    Column('created_at', DateTime, nullable=False),
    Column('updated_at', DateTime, nullable=False),
    UniqueConstraint('email', name='uq_users_email'),
)

floors = Table(
    'floors', metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('name', String(255), nullable=False),
    Column('description', Text),
    Column('team_id', Integer, ForeignKey('teams.id', ondelete='CASCADE'), nullable=False),
    Column('created_at', DateTime, nullable=False),
    Column('updated_at', DateTime, nullable=False),
)

rooms = Table(
    'rooms', metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('name', String(255), nullable=False),
    Column('description', Text),
    Column('floor_id', Integer, ForeignKey('floors.id', ondelete='CASCADE'), nullable=False),
    Column('team_id', Integer, ForeignKey('teams.id', ondelete='CASCADE'), nullable=False),
    Column('created_at', DateTime, nullable=False),
    Column('updated_at', DateTime, nullable=False),
)

assets = Table(
    'assets', metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('name', String(255), nullable=False),
    Column('code', String(100), nullable=False),
    Column('category', String(100)),
    Column('description', Text),
    Column('value', Numeric(12, 2)),
    Column('status', String(50), nullable=False, server_default=config.STATUS_ACTIVE),
    Column('floor_id', Integer, ForeignKey('floors.id', ondelete='SET NULL')),
    Column('room_id', Integer, ForeignKey('rooms.id', ondelete='SET NULL')),
    Column('photo', Text),
    Column('supplier', String(255)),
    Column('serial_number', String(255)),
    Column('team_id', Integer, ForeignKey('teams.id', ondelete='CASCADE'), nullable=False),
    Column('user_id', Integer, ForeignKey('users.id', ondelete='SET NULL')),
    Column('created_at', DateTime, nullable=False),
    Column('updated_at', DateTime, nullable=False),
    UniqueConstraint('code', 'team_id', name='uq_assets_code_team'),
)

Index('idx_users_email', users.c.email)
Index('idx_users_team_id', users.c.team_id)
Index('idx_floors_team_id', floors.c.team_id)
Index('idx_rooms_floor_id', rooms.c.floor_id)
Index('idx_rooms_team_id', rooms.c.team_id)
Index('idx_assets_team_id', assets.c.team_id)
Index('idx_assets_code', assets.c.code)

USER_PUBLIC_COLUMNS = [c for c in users.c if c.name != 'password_hash']

EMAIL_IN_USE = DomainError(ALREADY_EXISTS, config.MSG_EMAIL_IN_USE)
CODE_IN_USE = DomainError(ALREADY_EXISTS, config.MSG_CODE_IN_USE)

# (constraint name, SQLite column list, result) for unique keys callers can collide on
EMAIL_CONFLICT = ("uq_users_email", "users.email", EMAIL_IN_USE)
CODE_CONFLICT = ("uq_assets_code_team", "assets.code, assets.team_id", CODE_IN_USE)

# --- CONNECTION ---
_engine = None


def _probe(engine):
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def _probe_with_timeout(engine, timeout):
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(_probe, engine)
    try:
        future.result(timeout=timeout)
    except FutureTimeout:
        raise ConnectionTimeout(f"Connection probe did not answer within {timeout}s") from None
    finally:
        executor.shutdown(wait=False)


def _engine_options(url):
    options = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        # The probe opens the first connection on a worker thread
        options["connect_args"] = {"check_same_thread": False}
    return options


def connect():
    """Return the shared engine, creating and probing it on first use."""
    global _engine
    if _engine is not None:
        return _engine

    url = config.get_database_url()
    if not url:
        raise ConfigurationError(f"{config.DATABASE_URL_ENV} is not configured")

    engine = None
    try:
        engine = create_engine(url, **_engine_options(url))
        _probe_with_timeout(engine, config.CONNECT_TIMEOUT_SECONDS)
    except Exception:
        # Leave nothing cached so the next call starts over
        if engine is not None:
            engine.dispose()
        raise

    _engine = engine
    logger.info("[RemoteDB] Connection established")
    return _engine


def disconnect():
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None


def test_connection():
    try:
        engine = connect()
        with engine.connect() as conn:
            current_time = conn.execute(text("SELECT CURRENT_TIMESTAMP")).scalar()
        logger.info("[RemoteDB] Database time: %s", current_time)
        return True
    except Exception as e:
        logger.error("[RemoteDB] Connection test failed: %s", e)
        return False


def initialize_schema():
    try:
        engine = connect()
        metadata.create_all(engine, checkfirst=True)
        with engine.begin() as conn:
            # Check-then-insert: two processes may both see an empty table
            count = conn.execute(select(func.count()).select_from(teams)).scalar()
            if count == 0:
                stamp = now()
                conn.execute(
                    insert(teams),
                    [dict(team, created_at=stamp, updated_at=stamp) for team in config.DEFAULT_TEAMS],
                )
                logger.info("[RemoteDB] Seeded %d default teams", len(config.DEFAULT_TEAMS))
        return True
    except (SQLAlchemyError, ConnectionTimeout) as e:
        logger.error("[RemoteDB] Error initializing schema: %s", e)
        return False


# --- CONTROLLER ---
def _row(row):
    return dict(row._mapping) if row is not None else None


def _fetch(conn, table, record_id, columns=None):
    stmt = select(*(columns or [table])).where(table.c.id == record_id)
    return _row(conn.execute(stmt).first())


def _count(conn, table, *criteria):
    return conn.execute(select(func.count()).select_from(table).where(*criteria)).scalar()


class RemoteDatabase:
    """Storage operations against the hosted database.

    Each call runs in its own ``engine.begin()`` transaction.
    ``ConfigurationError`` is not caught here: a missing URL needs an operator.
    """

    def test_connection(self):
        return test_connection()

    def initialize_schema(self):
        return initialize_schema()

    def _run(self, action, work, conflicts=()):
        """Run ``work(conn)`` in one transaction.

        ``conflicts`` maps unique constraints, as ``(name, sqlite_columns,
        result)``, to the domain result returned when that constraint fires.
        Any other integrity error is a transport error.
        """
        try:
            engine = connect()
            with engine.begin() as conn:
                return work(conn)
        except InvalidRecord as e:
            return invalid(str(e))
        except IntegrityError as e:
            for constraint, columns, result in conflicts:
                if is_unique_violation(e, constraint, columns):
                    return result
            return self._transport_error(action, e)
        except (SQLAlchemyError, ConnectionTimeout) as e:
            return self._transport_error(action, e)

    def _transport_error(self, action, error):
        logger.error("[RemoteDB] Error %s: %s", action, error)
        return TransportError(str(error), cause=error)

    # --- TEAMS ---
    def get_all_teams(self):
        def work(conn):
            rows = conn.execute(select(teams).order_by(teams.c.name)).all()
            return Ok([_row(r) for r in rows])
        return self._run("fetching teams", work)

    def get_team_by_id(self, team_id):
        return self._run("fetching team", lambda conn: Ok(_fetch(conn, teams, team_id)))

    def add_team(self, data):
        def work(conn):
            stamp = now()
            result = conn.execute(insert(teams).values(**record_values(data, config.TEAM_FIELDS, config.TEAM_REQUIRED), created_at=stamp, updated_at=stamp))
            return Ok(_fetch(conn, teams, result.inserted_primary_key[0]))
        return self._run("creating team", work)

    def update_team(self, team_id, updates):
        def work(conn):
            if _fetch(conn, teams, team_id) is None:
                return not_found(config.MSG_TEAM_NOT_FOUND)
            values = record_values(updates, config.TEAM_FIELDS, config.TEAM_REQUIRED, creating=False)
            conn.execute(update(teams).where(teams.c.id == team_id).values(**values, updated_at=now()))
            return Ok(_fetch(conn, teams, team_id))
        return self._run("updating team", work)

    def get_team_members(self, team_id):
        def work(conn):
            stmt = select(*USER_PUBLIC_COLUMNS).where(users.c.team_id == team_id).order_by(users.c.name)
            return Ok([_row(r) for r in conn.execute(stmt).all()])
        return self._run("fetching team members", work)

    # --- USERS ---
    def add_user(self, data):
        def work(conn):
            values = record_values(data, config.USER_FIELDS, config.USER_REQUIRED)
            if _count(conn, users, users.c.email == values['email']) > 0:
                return EMAIL_IN_USE
            if data.get('password'):
                values['password_hash'] = hash_password(data['password'])
            stamp = now()
            result = conn.execute(insert(users).values(**values, created_at=stamp, updated_at=stamp))
            return Ok(_fetch(conn, users, result.inserted_primary_key[0], USER_PUBLIC_COLUMNS))
        return self._run("creating user", work, conflicts=[EMAIL_CONFLICT])

    def find_user_by_email(self, email):
        def work(conn):
            stmt = select(*USER_PUBLIC_COLUMNS).where(users.c.email == email).limit(1)
            return Ok(_row(conn.execute(stmt).first()))
        return self._run("fetching user", work)

    def update_user(self, user_id, updates):
        def work(conn):
            if _fetch(conn, users, user_id) is None:
                return not_found(config.MSG_USER_NOT_FOUND)
            values = record_values(updates, config.USER_UPDATE_FIELDS, config.USER_REQUIRED, creating=False)
            conn.execute(update(users).where(users.c.id == user_id).values(**values, updated_at=now()))
            return Ok(_fetch(conn, users, user_id, USER_PUBLIC_COLUMNS))
        return self._run("updating user", work)

    def update_user_password(self, user_id, new_password):
        def work(conn):
            if _fetch(conn, users, user_id) is None:
                return not_found(config.MSG_USER_NOT_FOUND)
            conn.execute(
                update(users).where(users.c.id == user_id)
                .values(password_hash=hash_password(new_password), updated_at=now())
            )
            return Ok(_fetch(conn, users, user_id, USER_PUBLIC_COLUMNS))
        return self._run("updating password", work)

    def verify_user(self, email, password):
        def work(conn):
            user = _row(conn.execute(select(users).where(users.c.email == email).limit(1)).first())
            if user is None:
                return not_found(config.MSG_EMAIL_NOT_FOUND)
            if not check_password(password, user.pop('password_hash')):
                return DomainError(INVALID_CREDENTIALS, config.MSG_WRONG_PASSWORD)
            return Ok(user)
        return self._run("authenticating user", work)

    def get_user_team(self, user_id):
        def work(conn):
            stmt = (
                select(users.c.team_id, teams.c.name.label('team_name'), teams.c.description.label('team_description'))
                .select_from(users.outerjoin(teams, users.c.team_id == teams.c.id))
                .where(users.c.id == user_id)
                .limit(1)
            )
            return Ok(_row(conn.execute(stmt).first()))
        return self._run("fetching user team", work)

    # --- FLOORS ---
    def get_all_floors(self, team_id=None):
        def work(conn):
            floor_stmt = select(floors).order_by(floors.c.name)
            room_stmt = select(rooms).order_by(rooms.c.name)
            if team_id is not None:
                floor_stmt = floor_stmt.where(floors.c.team_id == team_id)
                room_stmt = room_stmt.where(rooms.c.team_id == team_id)

            rooms_by_floor = defaultdict(list)
            for room in conn.execute(room_stmt).all():
                rooms_by_floor[room.floor_id].append(_row(room))

            results = []
            for floor in conn.execute(floor_stmt).all():
                item = _row(floor)
                item['rooms'] = rooms_by_floor.get(floor.id, [])
                results.append(item)
            return Ok(results)
        return self._run("fetching floors", work)

    def get_floor_by_name(self, name, team_id):
        def work(conn):
            stmt = (
                select(floors)
                .where(floors.c.team_id == team_id, func.lower(floors.c.name).like(f"%{name.lower()}%"))
                .order_by(floors.c.id)
                .limit(1)
            )
            return Ok(_row(conn.execute(stmt).first()))
        return self._run("fetching floor by name", work)

    def add_floor(self, data, team_id):
        def work(conn):
            stamp = now()
            result = conn.execute(
                insert(floors).values(**record_values(data, config.FLOOR_FIELDS, config.FLOOR_REQUIRED), team_id=team_id, created_at=stamp, updated_at=stamp)
            )
            return Ok(_fetch(conn, floors, result.inserted_primary_key[0]))
        return self._run("creating floor", work)

    def _owned(self, conn, table, record_id, team_id, missing_message):
        record = _fetch(conn, table, record_id)
        if record is None:
            return None, not_found(missing_message)
        if record['team_id'] != team_id:
            return None, access_denied(config.MSG_ACCESS_DENIED)
        return record, None

    def update_floor(self, floor_id, updates, team_id):
        def work(conn):
            _, denied = self._owned(conn, floors, floor_id, team_id, config.MSG_FLOOR_NOT_FOUND)
            if denied:
                return denied
            values = record_values(updates, config.FLOOR_FIELDS, config.FLOOR_REQUIRED, creating=False)
            conn.execute(update(floors).where(floors.c.id == floor_id).values(**values, updated_at=now()))
            return Ok(_fetch(conn, floors, floor_id))
        return self._run("updating floor", work)

    def delete_floor(self, floor_id, team_id):
        def work(conn):
            _, denied = self._owned(conn, floors, floor_id, team_id, config.MSG_FLOOR_NOT_FOUND)
            if denied:
                return denied
            floor_rooms = select(rooms.c.id).where(rooms.c.floor_id == floor_id)
            if _count(conn, assets, or_(assets.c.floor_id == floor_id, assets.c.room_id.in_(floor_rooms))) > 0:
                return DomainError(IN_USE, config.MSG_FLOOR_IN_USE)
            conn.execute(delete(rooms).where(rooms.c.floor_id == floor_id))
            conn.execute(delete(floors).where(floors.c.id == floor_id))
            return Ok()
        return self._run("deleting floor", work)

    # --- ROOMS ---
    def add_room(self, data, team_id):
        def work(conn):
            values = record_values(data, config.ROOM_FIELDS, config.ROOM_REQUIRED)
            _, denied = self._owned(conn, floors, values['floor_id'], team_id, config.MSG_FLOOR_NOT_FOUND)
            if denied:
                return denied
            stamp = now()
            result = conn.execute(
                insert(rooms).values(**values, team_id=team_id, created_at=stamp, updated_at=stamp)
            )
            return Ok(_fetch(conn, rooms, result.inserted_primary_key[0]))
        return self._run("creating room", work)

    def update_room(self, room_id, updates, team_id):
        def work(conn):
            room, denied = self._owned(conn, rooms, room_id, team_id, config.MSG_ROOM_NOT_FOUND)
            if denied:
                return denied
            values = record_values(updates, config.ROOM_FIELDS, config.ROOM_REQUIRED, creating=False)
            if 'floor_id' in values and values['floor_id'] != room['floor_id']:
                _, denied = self._owned(conn, floors, values['floor_id'], team_id, config.MSG_FLOOR_NOT_FOUND)
                if denied:
                    return denied
            conn.execute(update(rooms).where(rooms.c.id == room_id).values(**values, updated_at=now()))
            return Ok(_fetch(conn, rooms, room_id))
        return self._run("updating room", work)

    def delete_room(self, room_id, team_id):
        def work(conn):
            _, denied = self._owned(conn, rooms, room_id, team_id, config.MSG_ROOM_NOT_FOUND)
            if denied:
                return denied
            if _count(conn, assets, assets.c.room_id == room_id, assets.c.team_id == team_id) > 0:
                return DomainError(IN_USE, config.MSG_ROOM_IN_USE)
            conn.execute(delete(rooms).where(rooms.c.id == room_id))
            return Ok()
        return self._run("deleting room", work)

    # --- ASSETS ---
    def get_all_assets(self, team_id=None):
        def work(conn):
            stmt = select(assets).order_by(assets.c.created_at.desc(), assets.c.id.desc())
            if team_id is not None:
                stmt = stmt.where(assets.c.team_id == team_id)
            return Ok([_row(r) for r in conn.execute(stmt).all()])
        return self._run("fetching assets", work)

    def _code_taken(self, conn, code, exclude_id, team_id):
        criteria = [assets.c.code == code, assets.c.team_id == team_id]
        if exclude_id is not None:
            criteria.append(assets.c.id != exclude_id)
        return _count(conn, assets, *criteria) > 0

    def check_code_exists(self, code, exclude_id, team_id):
        return self._run(
            "checking asset code",
            lambda conn: Ok(self._code_taken(conn, code, exclude_id, team_id)),
        )

    def _check_location(self, conn, values, team_id, asset=None):
        """Floor and room must belong to the team, and the room must be on the floor."""
        if 'floor_id' not in values and 'room_id' not in values:
            return None
        floor_id = values.get('floor_id', asset['floor_id'] if asset else None)
        room_id = values.get('room_id', asset['room_id'] if asset else None)
        if 'floor_id' in values and floor_id is not None:
            _, denied = self._owned(conn, floors, floor_id, team_id, config.MSG_FLOOR_NOT_FOUND)
            if denied:
                return denied
        if room_id is None:
            return None
        room, denied = self._owned(conn, rooms, room_id, team_id, config.MSG_ROOM_NOT_FOUND)
        if denied:
            return denied
        if floor_id is not None and room['floor_id'] != floor_id:
            return invalid(config.MSG_ROOM_NOT_ON_FLOOR)
        return None

    def add_asset(self, data, team_id, user_id=None):
        def work(conn):
            values = asset_values(data)
            denied = self._check_location(conn, values, team_id)
            if denied:
                return denied
            if self._code_taken(conn, values['code'], None, team_id):
                return CODE_IN_USE
            stamp = now()
            result = conn.execute(
                insert(assets).values(**values, team_id=team_id, user_id=user_id, created_at=stamp, updated_at=stamp)
            )
            return Ok(_fetch(conn, assets, result.inserted_primary_key[0]))
        return self._run("creating asset", work, conflicts=[CODE_CONFLICT])

    def update_asset(self, asset_id, updates, team_id):
        def work(conn):
            asset, denied = self._owned(conn, assets, asset_id, team_id, config.MSG_ASSET_NOT_FOUND)
            if denied:
                return denied
            values = asset_values(updates, creating=False)
            denied = self._check_location(conn, values, team_id, asset)
            if denied:
                return denied
            if 'code' in values and values['code'] != asset['code']:
                if self._code_taken(conn, values['code'], asset_id, team_id):
                    return CODE_IN_USE
            conn.execute(update(assets).where(assets.c.id == asset_id).values(**values, updated_at=now()))
            return Ok(_fetch(conn, assets, asset_id))
        return self._run("updating asset", work, conflicts=[CODE_CONFLICT])

    def delete_asset(self, asset_id, team_id):
        def work(conn):
            _, denied = self._owned(conn, assets, asset_id, team_id, config.MSG_ASSET_NOT_FOUND)
            if denied:
                return denied
            conn.execute(delete(assets).where(assets.c.id == asset_id))
            return Ok()
        return self._run("deleting asset", work)
