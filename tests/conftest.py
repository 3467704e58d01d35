import os
import tempfile

# Settings are read once at import time, so the environment is fixed here
# before any test module imports the application.
for _name in ("DATABASE_URL", "SUPABASE_URL", "SUPABASE_ANON_KEY", "SUPABASE_SERVICE_KEY"):
    os.environ.pop(_name, None)
os.environ["USE_MEMORY_BACKEND"] = "true"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["MEDIA_ROOT"] = tempfile.mkdtemp(prefix="djsite-media-")
os.environ["ADMIN_EMAIL"] = "admin@example.com"
os.environ["ADMIN_PASSWORD"] = "correct-horse"
os.environ["PRELOAD_SETTLE_SECONDS"] = "0"
os.environ["PRELOAD_WARM_IMAGES"] = "false"
