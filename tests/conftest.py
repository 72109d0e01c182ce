import os

# Keep the module-level engine away from a real Postgres and skip signature checks.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["STRIPE_WEBHOOK_SECRET"] = ""
