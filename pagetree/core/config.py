from os import getenv

class Settings:
    DATABASE_URL = getenv("DATABASE_URL", "postgresql+psycopg://pagetree:pagetree@db:5432/pagetree")
    JWT_SECRET = getenv("JWT_SECRET", "dev-secret-change-in-prod")
    JWT_EXPIRE_MIN = int(getenv("JWT_EXPIRE_MIN", "15"))  # expire au bout de 15 minutes
    JWT_REFRESH_EXPIRE_MIN = int(getenv("JWT_REFRESH_EXPIRE_MIN", "43200"))  # expire au bout d'1 mois
    LOG_LEVEL = getenv("LOG_LEVEL", "INFO")
    ORDER_KEY_MAX_LENGTH = int(getenv("ORDER_KEY_MAX_LENGTH", "255"))  # largeur de la colonne pages.order
    MOVE_RETRY_ATTEMPTS = int(getenv("MOVE_RETRY_ATTEMPTS", "1"))

settings = Settings()
