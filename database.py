from collections import defaultdict

from sqlalchemy import create_engine, or_, Column, Integer, String, Text, Numeric, DateTime, UniqueConstraint, Index, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker, scoped_session

import config
from app_logger import get_logger
from passwords import hash_password, check_password
from records import now as _now, record_values as _record_values, asset_values as _asset_values, is_unique_violation
from results import (
    Ok, DomainError, TransportError, InvalidRecord,
    ALREADY_EXISTS, IN_USE, INVALID_CREDENTIALS, not_found, access_denied, invalid,
)

logger = get_logger("local_db")

# (constraint name, SQLite column list) of the unique keys callers can collide on
EMAIL_UNIQUE = ("ix_users_email", "users.email")
CODE_UNIQUE = ("uq_assets_code_team", "assets.code, assets.team_id")

Base = declarative_base()


class RecordMixin:
    _hidden = ()

    def to_dict(self):
        return {
            c.name: getattr(self, c.name)
            for c in self.__table__.columns
            if c.name not in self._hidden
        }


# --- MODELS ---
class Team(RecordMixin, Base):
    __tablename__ = 'teams'
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class User(RecordMixin, Base):
    __tablename__ = 'users'
    _hidden = ('password_hash',)
    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    password_hash = Column(String(255))
    company = Column(String(255))
    photo = Column(Text)
    team_id = Column(Integer, index=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class Floor(RecordMixin, Base):
    __tablename__ = 'floors'
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    team_id = Column(Integer, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class Room(RecordMixin, Base):
    __tablename__ = 'rooms'
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    floor_id = Column(Integer, nullable=False, index=True)
    team_id = Column(Integer, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class Asset(RecordMixin, Base):
    __tablename__ = 'assets'
    __table_args__ = (
        UniqueConstraint('code', 'team_id', name='uq_assets_code_team'),
        Index('ix_assets_code', 'code'),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    code = Column(String(100), nullable=False)
    category = Column(String(100))
    description = Column(Text)
    value = Column(Numeric(12, 2))
    status = Column(String(50), nullable=False, default=config.STATUS_ACTIVE)
    floor_id = Column(Integer)
    room_id = Column(Integer)
    photo = Column(Text)
    supplier = Column(String(255))
    serial_number = Column(String(255))
    team_id = Column(Integer, nullable=False, index=True)
    user_id = Column(Integer, index=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


# --- CONTROLLER ---
class Database:
    """Embedded SQLite store used when the hosted database is unavailable.

    Every public method opens its own session, so each call is one
    transaction over just the tables it touches.
    """

    def __init__(self, db_name=None):
        self.db_name = db_name or config.LOCAL_DB_NAME
        self.engine = create_engine(f'sqlite:///{self.db_name}', connect_args={'check_same_thread': False})
        self.Session = scoped_session(sessionmaker(bind=self.engine, expire_on_commit=False))
        self.initialize_schema()

    def get_session(self):
        return self.Session()

    def _transport_error(self, action, error):
        logger.error("[LocalDB] Error %s: %s", action, error)
        return TransportError(str(error), cause=error)

    def test_connection(self):
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error("[LocalDB] Connection test failed: %s", e)
            return False

    def initialize_schema(self):
        try:
            Base.metadata.create_all(self.engine)
            self.create_default_teams()
            return True
        except SQLAlchemyError as e:
            logger.error("[LocalDB] Error initializing schema: %s", e)
            return False

    def create_default_teams(self):
        session = self.get_session()
        try:
            # Not atomic against a second process seeding the same file
            if session.query(Team).count() == 0:
                now = _now()
                for team in config.DEFAULT_TEAMS:
                    session.add(Team(name=team['name'], description=team['description'], created_at=now, updated_at=now))
                session.commit()
                logger.info("[LocalDB] Seeded %d default teams", len(config.DEFAULT_TEAMS))
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    # --- TEAMS ---
    def get_all_teams(self):
        session = self.get_session()
        try:
            teams = session.query(Team).order_by(Team.name).all()
            return Ok([t.to_dict() for t in teams])
        except SQLAlchemyError as e:
            return self._transport_error("fetching teams", e)
        finally:
            session.close()

    def get_team_by_id(self, team_id):
        session = self.get_session()
        try:
            team = session.query(Team).filter_by(id=team_id).first()
            return Ok(team.to_dict() if team else None)
        except SQLAlchemyError as e:
            return self._transport_error("fetching team", e)
        finally:
            session.close()

    def add_team(self, data):
        session = self.get_session()
        try:
            now = _now()
            team = Team(**_record_values(data, config.TEAM_FIELDS, config.TEAM_REQUIRED), created_at=now, updated_at=now)
            session.add(team)
            session.commit()
            return Ok(team.to_dict())
        except InvalidRecord as e:
            return invalid(str(e))
        except SQLAlchemyError as e:
            session.rollback()
            return self._transport_error("creating team", e)
        finally:
            session.close()

    def update_team(self, team_id, updates):
        session = self.get_session()
        try:
            team = session.query(Team).filter_by(id=team_id).first()
            if not team:
                return not_found(config.MSG_TEAM_NOT_FOUND)
            for key, value in _record_values(updates, config.TEAM_FIELDS, config.TEAM_REQUIRED, creating=False).items():
                setattr(team, key, value)
            team.updated_at = _now()
            session.commit()
            return Ok(team.to_dict())
        except InvalidRecord as e:
            return invalid(str(e))
        except SQLAlchemyError as e:
            session.rollback()
            return self._transport_error("updating team", e)
        finally:
            session.close()

    def get_team_members(self, team_id):
        session = self.get_session()
        try:
            users = session.query(User).filter_by(team_id=team_id).order_by(User.name).all()
            return Ok([u.to_dict() for u in users])
        except SQLAlchemyError as e:
            return self._transport_error("fetching team members", e)
        finally:
            session.close()

    # --- USERS ---
    def add_user(self, data):
        session = self.get_session()
        try:
            values = _record_values(data, config.USER_FIELDS, config.USER_REQUIRED)
            if session.query(User).filter_by(email=values['email']).count() > 0:
                return DomainError(ALREADY_EXISTS, config.MSG_EMAIL_IN_USE)
            now = _now()
            user = User(**values, created_at=now, updated_at=now)
            if data.get('password'):
                user.password_hash = hash_password(data['password'])
            session.add(user)
            session.commit()
            return Ok(user.to_dict())
        except InvalidRecord as e:
            return invalid(str(e))
        except IntegrityError as e:
            session.rollback()
            if is_unique_violation(e, *EMAIL_UNIQUE):
                return DomainError(ALREADY_EXISTS, config.MSG_EMAIL_IN_USE)
            return self._transport_error("creating user", e)
        except SQLAlchemyError as e:
            session.rollback()
            return self._transport_error("creating user", e)
        finally:
            session.close()

    def find_user_by_email(self, email):
        session = self.get_session()
        try:
            user = session.query(User).filter_by(email=email).first()
            return Ok(user.to_dict() if user else None)
        except SQLAlchemyError as e:
            return self._transport_error("fetching user", e)
        finally:
            session.close()

    def update_user(self, user_id, updates):
        session = self.get_session()
        try:
            user = session.query(User).filter_by(id=user_id).first()
            if not user:
                return not_found(config.MSG_USER_NOT_FOUND)
            values = _record_values(updates, config.USER_UPDATE_FIELDS, config.USER_REQUIRED, creating=False)
            for key, value in values.items():
                setattr(user, key, value)
            user.updated_at = _now()
            session.commit()
            return Ok(user.to_dict())
        except InvalidRecord as e:
            return invalid(str(e))
        except SQLAlchemyError as e:
            session.rollback()
            return self._transport_error("updating user", e)
        finally:
            session.close()

    def update_user_password(self, user_id, new_password):
        session = self.get_session()
        try:
            user = session.query(User).filter_by(id=user_id).first()
            if not user:
                return not_found(config.MSG_USER_NOT_FOUND)
            user.password_hash = hash_password(new_password)
            user.updated_at = _now()
            session.commit()
            return Ok(user.to_dict())
        except SQLAlchemyError as e:
            session.rollback()
            return self._transport_error("updating password", e)
        finally:
            session.close()

    def verify_user(self, email, password):
        session = self.get_session()
        try:
            user = session.query(User).filter_by(email=email).first()
            if not user:
                return not_found(config.MSG_EMAIL_NOT_FOUND)
            if not check_password(password, user.password_hash):
                return DomainError(INVALID_CREDENTIALS, config.MSG_WRONG_PASSWORD)
            return Ok(user.to_dict())
        except SQLAlchemyError as e:
            return self._transport_error("authenticating user", e)
        finally:
            session.close()

    def get_user_team(self, user_id):
        session = self.get_session()
        try:
            user = session.query(User).filter_by(id=user_id).first()
            if not user:
                return Ok(None)
            team = session.query(Team).filter_by(id=user.team_id).first() if user.team_id else None
            return Ok({
                "team_id": user.team_id,
                "team_name": team.name if team else None,
                "team_description": team.description if team else None,
            })
        except SQLAlchemyError as e:
            return self._transport_error("fetching user team", e)
        finally:
            session.close()

    # --- FLOORS ---
    def get_all_floors(self, team_id=None):
        session = self.get_session()
        try:
            floor_query = session.query(Floor)
            room_query = session.query(Room)
            if team_id is not None:
                floor_query = floor_query.filter_by(team_id=team_id)
                room_query = room_query.filter_by(team_id=team_id)
            floors = floor_query.order_by(Floor.name).all()

            # One room query for all floors, grouped here
            rooms_by_floor = defaultdict(list)
            for room in room_query.order_by(Room.name).all():
                rooms_by_floor[room.floor_id].append(room.to_dict())

            results = []
            for floor in floors:
                item = floor.to_dict()
                item['rooms'] = rooms_by_floor.get(floor.id, [])
                results.append(item)
            return Ok(results)
        except SQLAlchemyError as e:
            return self._transport_error("fetching floors", e)
        finally:
            session.close()

    def get_floor_by_name(self, name, team_id):
        session = self.get_session()
        try:
            floor = (
                session.query(Floor)
                .filter(Floor.team_id == team_id, Floor.name.ilike(f"%{name}%"))
                .order_by(Floor.id)
                .first()
            )
            return Ok(floor.to_dict() if floor else None)
        except SQLAlchemyError as e:
            return self._transport_error("fetching floor by name", e)
        finally:
            session.close()

    def add_floor(self, data, team_id):
        session = self.get_session()
        try:
            now = _now()
            values = _record_values(data, config.FLOOR_FIELDS, config.FLOOR_REQUIRED)
            floor = Floor(**values, team_id=team_id, created_at=now, updated_at=now)
            session.add(floor)
            session.commit()
            return Ok(floor.to_dict())
        except InvalidRecord as e:
            return invalid(str(e))
        except SQLAlchemyError as e:
            session.rollback()
            return self._transport_error("creating floor", e)
        finally:
            session.close()

    def update_floor(self, floor_id, updates, team_id):
        session = self.get_session()
        try:
            floor = session.query(Floor).filter_by(id=floor_id).first()
            if not floor:
                return not_found(config.MSG_FLOOR_NOT_FOUND)
            if floor.team_id != team_id:
                return access_denied(config.MSG_ACCESS_DENIED)
            for key, value in _record_values(updates, config.FLOOR_FIELDS, config.FLOOR_REQUIRED, creating=False).items():
                setattr(floor, key, value)
            floor.updated_at = _now()
            session.commit()
            return Ok(floor.to_dict())
        except InvalidRecord as e:
            return invalid(str(e))
        except SQLAlchemyError as e:
            session.rollback()
            return self._transport_error("updating floor", e)
        finally:
            session.close()

    def delete_floor(self, floor_id, team_id):
        session = self.get_session()
        try:
            floor = session.query(Floor).filter_by(id=floor_id).first()
            if not floor:
                return not_found(config.MSG_FLOOR_NOT_FOUND)
            if floor.team_id != team_id:
                return access_denied(config.MSG_ACCESS_DENIED)
            room_ids = session.query(Room.id).filter_by(floor_id=floor_id)
            in_use = session.query(Asset).filter(
                or_(Asset.floor_id == floor_id, Asset.room_id.in_(room_ids.scalar_subquery()))
            ).count()
            if in_use > 0:
                return DomainError(IN_USE, config.MSG_FLOOR_IN_USE)
            session.query(Room).filter_by(floor_id=floor_id).delete()
            session.delete(floor)
            session.commit()
            return Ok()
        except SQLAlchemyError as e:
            session.rollback()
            return self._transport_error("deleting floor", e)
        finally:
            session.close()

    # --- ROOMS ---
    def _check_floor_team(self, session, floor_id, team_id):
        floor = session.query(Floor).filter_by(id=floor_id).first()
        if not floor:
            return not_found(config.MSG_FLOOR_NOT_FOUND)
        if floor.team_id != team_id:
            return access_denied(config.MSG_ACCESS_DENIED)
        return None

    def add_room(self, data, team_id):
        session = self.get_session()
        try:
            values = _record_values(data, config.ROOM_FIELDS, config.ROOM_REQUIRED)
            denied = self._check_floor_team(session, values['floor_id'], team_id)
            if denied:
                return denied
            now = _now()
            room = Room(**values, team_id=team_id, created_at=now, updated_at=now)
            session.add(room)
            session.commit()
            return Ok(room.to_dict())
        except InvalidRecord as e:
            return invalid(str(e))
        except SQLAlchemyError as e:
            session.rollback()
            return self._transport_error("creating room", e)
        finally:
            session.close()

    def update_room(self, room_id, updates, team_id):
        session = self.get_session()
        try:
            room = session.query(Room).filter_by(id=room_id).first()
            if not room:
                return not_found(config.MSG_ROOM_NOT_FOUND)
            if room.team_id != team_id:
                return access_denied(config.MSG_ACCESS_DENIED)
            values = _record_values(updates, config.ROOM_FIELDS, config.ROOM_REQUIRED, creating=False)
            if 'floor_id' in values and values['floor_id'] != room.floor_id:
                denied = self._check_floor_team(session, values['floor_id'], team_id)
                if denied:
                    return denied
            for key, value in values.items():
                setattr(room, key, value)
            room.updated_at = _now()
            session.commit()
            return Ok(room.to_dict())
        except InvalidRecord as e:
            return invalid(str(e))
        except SQLAlchemyError as e:
            session.rollback()
            return self._transport_error("updating room", e)
        finally:
            session.close()

    def delete_room(self, room_id, team_id):
        session = self.get_session()
        try:
            room = session.query(Room).filter_by(id=room_id).first()
            if not room:
                return not_found(config.MSG_ROOM_NOT_FOUND)
            if room.team_id != team_id:
                return access_denied(config.MSG_ACCESS_DENIED)
            if session.query(Asset).filter_by(room_id=room_id, team_id=team_id).count() > 0:
                return DomainError(IN_USE, config.MSG_ROOM_IN_USE)
            session.delete(room)
            session.commit()
            return Ok()
        except SQLAlchemyError as e:
            session.rollback()
            return self._transport_error("deleting room", e)
        finally:
            session.close()

    # --- ASSETS ---
    def get_all_assets(self, team_id=None):
        session = self.get_session()
        try:
            query = session.query(Asset)
            if team_id is not None:
                query = query.filter_by(team_id=team_id)
            assets = query.order_by(Asset.created_at.desc(), Asset.id.desc()).all()
            return Ok([a.to_dict() for a in assets])
        except SQLAlchemyError as e:
            return self._transport_error("fetching assets", e)
        finally:
            session.close()

    def _code_taken(self, session, code, exclude_id, team_id):
        assets = session.query(Asset).filter_by(team_id=team_id).all()
        return any(a.code == code and a.id != exclude_id for a in assets)

    def check_code_exists(self, code, exclude_id, team_id):
        session = self.get_session()
        try:
            return Ok(self._code_taken(session, code, exclude_id, team_id))
        except SQLAlchemyError as e:
            return self._transport_error("checking asset code", e)
        finally:
            session.close()

    def _check_location(self, session, values, team_id, asset=None):
        """Floor and room must belong to the team, and the room must be on the floor."""
        if 'floor_id' not in values and 'room_id' not in values:
            return None
        floor_id = values.get('floor_id', asset.floor_id if asset else None)
        room_id = values.get('room_id', asset.room_id if asset else None)
        if 'floor_id' in values and floor_id is not None:
            denied = self._check_floor_team(session, floor_id, team_id)
            if denied:
                return denied
        if room_id is None:
            return None
        room = session.query(Room).filter_by(id=room_id).first()
        if not room:
            return not_found(config.MSG_ROOM_NOT_FOUND)
        if room.team_id != team_id:
            return access_denied(config.MSG_ACCESS_DENIED)
        if floor_id is not None and room.floor_id != floor_id:
            return invalid(config.MSG_ROOM_NOT_ON_FLOOR)
        return None

    def add_asset(self, data, team_id, user_id=None):
        session = self.get_session()
        try:
            values = _asset_values(data)
            denied = self._check_location(session, values, team_id)
            if denied:
                return denied
            if self._code_taken(session, values['code'], None, team_id):
                return DomainError(ALREADY_EXISTS, config.MSG_CODE_IN_USE)
            now = _now()
            asset = Asset(**values, team_id=team_id, user_id=user_id, created_at=now, updated_at=now)
            session.add(asset)
            session.commit()
            return Ok(asset.to_dict())
        except InvalidRecord as e:
            return invalid(str(e))
        except IntegrityError as e:
            session.rollback()
            if is_unique_violation(e, *CODE_UNIQUE):
                return DomainError(ALREADY_EXISTS, config.MSG_CODE_IN_USE)
            return self._transport_error("creating asset", e)
        except SQLAlchemyError as e:
            session.rollback()
            return self._transport_error("creating asset", e)
        finally:
            session.close()

    def update_asset(self, asset_id, updates, team_id):
        session = self.get_session()
        try:
            asset = session.query(Asset).filter_by(id=asset_id).first()
            if not asset:
                return not_found(config.MSG_ASSET_NOT_FOUND)
            if asset.team_id != team_id:
                return access_denied(config.MSG_ACCESS_DENIED)
            values = _asset_values(updates, creating=False)
            denied = self._check_location(session, values, team_id, asset)
            if denied:
                return denied
            if 'code' in values and values['code'] != asset.code:
                if self._code_taken(session, values['code'], asset.id, team_id):
                    return DomainError(ALREADY_EXISTS, config.MSG_CODE_IN_USE)
            for key, value in values.items():
                setattr(asset, key, value)
            asset.updated_at = _now()
            session.commit()
            return Ok(asset.to_dict())
        except InvalidRecord as e:
            return invalid(str(e))
        except IntegrityError as e:
            session.rollback()
            if is_unique_violation(e, *CODE_UNIQUE):
                return DomainError(ALREADY_EXISTS, config.MSG_CODE_IN_USE)
            return self._transport_error("updating asset", e)
        except SQLAlchemyError as e:
            session.rollback()
            return self._transport_error("updating asset", e)
        finally:
            session.close()

    def delete_asset(self, asset_id, team_id):
        session = self.get_session()
        try:
            asset = session.query(Asset).filter_by(id=asset_id).first()
            if not asset:
                return not_found(config.MSG_ASSET_NOT_FOUND)
            if asset.team_id != team_id:
                return access_denied(config.MSG_ACCESS_DENIED)
            session.delete(asset)
            session.commit()
            return Ok()
        except SQLAlchemyError as e:
            session.rollback()
            return self._transport_error("deleting asset", e)
        finally:
            session.close()
