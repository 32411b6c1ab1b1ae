import os
import tempfile

# Services read their configuration at import time, so this must run
# before any test module imports them.
_DB_DIR = tempfile.mkdtemp(prefix="special-rooms-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["TESTING"] = "1"
os.environ["JWT_SECRET_KEY"] = "special-rooms-test-secret"
os.environ.pop("REDIS_URL", None)
