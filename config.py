# config.py
import os
from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL_ENV = "DATABASE_URL"
LOCAL_DB_NAME = os.getenv("ASSET_MANAGER_LOCAL_DB", "asset_manager.db")
CONNECT_TIMEOUT_SECONDS = 10

# Backend selection ("local" or "remote")
BACKEND_ENV = "ASSET_MANAGER_BACKEND"
DEFAULT_BACKEND = "remote"

# Logging
LOG_LEVEL = os.getenv("ASSET_MANAGER_LOG_LEVEL", "INFO").upper()


def get_database_url():
    # Read at call time so a missing URL only fails on first connect
    return os.getenv(DATABASE_URL_ENV)


def get_backend_name():
    return os.getenv(BACKEND_ENV, DEFAULT_BACKEND).strip().lower()


# Asset status values
STATUS_ACTIVE = "Active"
STATUS_INACTIVE = "Inactive"
STATUS_MAINTENANCE = "Maintenance"
STATUS_DISPOSED = "Disposed"
ASSET_STATUSES = [STATUS_ACTIVE, STATUS_INACTIVE, STATUS_MAINTENANCE, STATUS_DISPOSED]

# Seed data
DEFAULT_TEAMS = [
    {"name": "TI - Tecnologia da Informação", "description": "Equipamentos de tecnologia e infraestrutura"},
    {"name": "Facilities - Infraestrutura", "description": "Móveis, equipamentos de escritório e infraestrutura física"},
    {"name": "RH - Recursos Humanos", "description": "Equipamentos e materiais do setor de RH"},
]

DEFAULT_LAYOUT = [
    {
        "name": "5º Andar",
        "description": "Quinto andar - Administrativo e Financeiro",
        "rooms": [
            {"name": "Sala de Reuniões 501", "description": "Sala de reuniões principal"},
            {"name": "Departamento Financeiro", "description": "Setor financeiro e contábil"},
            {"name": "Recursos Humanos", "description": "Departamento de RH"},
        ],
    },
    {
        "name": "11º Andar",
        "description": "Décimo primeiro andar - Tecnologia e Inovação",
        "rooms": [
            {"name": "Sala de Desenvolvimento", "description": "Equipe de desenvolvimento de software"},
            {"name": "Laboratório de Testes", "description": "Ambiente para testes e homologação"},
            {"name": "Sala de Inovação", "description": "Espaço para brainstorming e inovação"},
        ],
    },
    {
        "name": "15º Andar",
        "description": "Décimo quinto andar - Diretoria Executiva",
        "rooms": [
            {"name": "Sala da Diretoria", "description": "Sala do conselho executivo"},
            {"name": "Sala de Reuniões Executiva", "description": "Reuniões de alta gestão"},
            {"name": "Secretaria Executiva", "description": "Suporte à diretoria"},
        ],
    },
]

# User-facing domain messages
MSG_ACCESS_DENIED = "Acesso negado"
MSG_USER_NOT_FOUND = "Usuário não encontrado"
MSG_TEAM_NOT_FOUND = "Time não encontrado"
MSG_FLOOR_NOT_FOUND = "Andar não encontrado"
MSG_ROOM_NOT_FOUND = "Sala não encontrada"
MSG_ASSET_NOT_FOUND = "Ativo não encontrado"
MSG_EMAIL_NOT_FOUND = "E-mail não encontrado"
MSG_WRONG_PASSWORD = "Senha incorreta"
MSG_EMAIL_IN_USE = "Este e-mail já está em uso"
MSG_CODE_IN_USE = "Já existe um ativo com este código neste time"
MSG_FLOOR_IN_USE = "Não é possível excluir o andar pois existem ativos vinculados a ele"
MSG_ROOM_IN_USE = "Não é possível excluir a sala pois existem ativos vinculados a ela"
MSG_ROOM_NOT_ON_FLOOR = "A sala não pertence ao andar informado"
MSG_INVALID_STATUS = "Status inválido: {}"
MSG_INVALID_VALUE = "Valor inválido: {}"
MSG_REQUIRED_FIELD = "Campo obrigatório não informado: {}"

# Writable fields per entity (id, ownership and timestamps are set by the adapters)
TEAM_FIELDS = ("name", "description")
USER_FIELDS = ("email", "name", "company", "photo", "team_id")
USER_UPDATE_FIELDS = ("name", "company", "photo", "team_id")
FLOOR_FIELDS = ("name", "description")
ROOM_FIELDS = ("name", "description", "floor_id")
ASSET_FIELDS = (
    "name", "code", "category", "description", "value", "status",
    "floor_id", "room_id", "photo", "supplier", "serial_number",
)

# Fields that may not be missing or blank
TEAM_REQUIRED = ("name",)
USER_REQUIRED = ("email", "name")
FLOOR_REQUIRED = ("name",)
ROOM_REQUIRED = ("name", "floor_id")
ASSET_REQUIRED = ("name", "code")
