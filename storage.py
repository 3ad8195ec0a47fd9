"""Backend selection and helpers that work against any storage backend."""
from collections import Counter
from decimal import Decimal
from typing import Protocol

import config
from app_logger import get_logger
from database import Database
from remote_database import RemoteDatabase
from results import ConfigurationError, Ok

logger = get_logger("storage")


class Storage(Protocol):
    """Operations shared by ``Database`` and ``RemoteDatabase``.

    Every data operation returns ``Ok``, ``DomainError`` or ``TransportError``.
    """

    def test_connection(self): ...
    def initialize_schema(self): ...

    def get_all_teams(self): ...
    def get_team_by_id(self, team_id): ...
    def add_team(self, data): ...
    def update_team(self, team_id, updates): ...
    def get_team_members(self, team_id): ...

    def add_user(self, data): ...
    def find_user_by_email(self, email): ...
    def update_user(self, user_id, updates): ...
    def update_user_password(self, user_id, new_password): ...
    def verify_user(self, email, password): ...
    def get_user_team(self, user_id): ...

    def get_all_floors(self, team_id=None): ...
    def get_floor_by_name(self, name, team_id): ...
    def add_floor(self, data, team_id): ...
    def update_floor(self, floor_id, updates, team_id): ...
    def delete_floor(self, floor_id, team_id): ...

    def add_room(self, data, team_id): ...
    def update_room(self, room_id, updates, team_id): ...
    def delete_room(self, room_id, team_id): ...

    def get_all_assets(self, team_id=None): ...
    def check_code_exists(self, code, exclude_id, team_id): ...
    def add_asset(self, data, team_id, user_id=None): ...
    def update_asset(self, asset_id, updates, team_id): ...
    def delete_asset(self, asset_id, team_id): ...


BACKENDS = {
    "local": Database,
    "remote": RemoteDatabase,
}


def get_storage(backend=None) -> Storage:
    name = (backend or config.get_backend_name()).lower()
    if name not in BACKENDS:
        raise ConfigurationError(f"Unknown storage backend '{name}', expected one of {sorted(BACKENDS)}")
    logger.info("Using %s storage backend", name)
    return BACKENDS[name]()


def seed_default_layout(storage: Storage, team_id):
    """Create the default floors and their rooms for a team.

    Floors whose name already exists in the team are skipped, so this is safe
    to call on every login. Returns the result of the first failing call, or
    ``Ok`` with the floors created.
    """
    existing = storage.get_all_floors(team_id)
    if not existing.success:
        return existing
    taken = {floor['name'].strip().lower() for floor in existing.data}

    created = []
    for layout in config.DEFAULT_LAYOUT:
        if layout['name'].lower() in taken:
            continue
        floor = storage.add_floor({"name": layout['name'], "description": layout['description']}, team_id)
        if not floor.success:
            return floor
        for room_data in layout['rooms']:
            room = storage.add_room(dict(room_data, floor_id=floor.data['id']), team_id)
            if not room.success:
                return room
        logger.info("Created default floor '%s' for team %s", layout['name'], team_id)
        created.append(floor.data)
    return Ok(created)


def get_asset_stats(storage: Storage, team_id):
    result = storage.get_all_assets(team_id)
    if not result.success:
        return result
    assets = result.data
    total_value = sum((a['value'] for a in assets if a['value'] is not None), Decimal("0"))
    by_status = Counter(a['status'] for a in assets)
    return Ok({
        "total": len(assets),
        "total_value": total_value,
        "by_status": {status: by_status.get(status, 0) for status in config.ASSET_STATUSES},
    })
