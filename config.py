from __future__ import annotations
import os
from pathlib import Path

class BaseConfig:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    BASE_DIR = Path(__file__).resolve().parent
    # SQLite file in project directory
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR / 'app.db'}")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JSON_SORT_KEYS = False

    # CSRF через Flask-WTF, токен берём из /api/v1/csrf
    WTF_CSRF_HEADERS = ["X-CSRF-Token", "X-CSRFToken"]
    WTF_CSRF_TIME_LIMIT = None

    # лимит попыток логина
    AUTH_RL_MAX = 5
    AUTH_RL_WINDOW = 300

    # часовой пояс колледжа: по нему считаем "сегодня" и день недели занятия
    INSTITUTION_TZ = os.getenv("INSTITUTION_TZ", "Africa/Addis_Ababa")
    ATTENDANCE_THRESHOLD = float(os.getenv("ATTENDANCE_THRESHOLD", "75"))
    # предупреждения о низкой посещаемости только в полосе [floor, threshold)
    ATTENDANCE_WARNING_FLOOR = float(os.getenv("ATTENDANCE_WARNING_FLOOR", "60"))
    # месяцы до SEMESTER_SPLIT_MONTH -> 1 семестр, остальные -> 2
    SEMESTER_SPLIT_MONTH = 7

    SEED_TEST_DATA = False
    DEFAULT_USERS: list[dict] = []

class DevConfig(BaseConfig):
    DEBUG = True
    SEED_TEST_DATA = True
    DEFAULT_USERS = [
        {"email": "registrar@example.com", "password": "pass", "role": "REGISTRAR",
         "first_name": "Default", "father_name": "Registrar"},
        {"email": "head@example.com", "password": "pass", "role": "DEPARTMENT_HEAD",
         "first_name": "Default", "father_name": "Head", "department": "ICT"},
    ]

class TestConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    WTF_CSRF_ENABLED = False
    AUTH_RL_MAX = 50

class ProdConfig(BaseConfig):
    DEBUG = False
    SEED_TEST_DATA = False
    DEFAULT_USERS = []

config_map = {
    "dev": DevConfig,
    "test": TestConfig,
    "prod": ProdConfig,
    "default": DevConfig,
}
