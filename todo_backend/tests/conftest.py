import os

# Defaults for the whole test session; set before the app module is imported.
os.environ.setdefault("PERSISTENCE_BACKEND", "memory")
os.environ.setdefault("ENABLE_SCHEDULER", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")
