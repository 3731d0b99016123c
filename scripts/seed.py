"""
Seed script to populate baseline roles, permissions and users.

Runs the same bootstrap sequence as application startup:
- roles from app/_data/roles.json
- permissions from app/_data/permissions.json, linked to roles by user type
- users from app/_data/users.json

Stages whose table already holds data are skipped.

Usage:
    uv run python -m scripts.seed
    SEED_DATA_DIR=./fixtures uv run python -m scripts.seed
"""
import asyncio
import sys

from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.bootstrap.datasets import SeedDatasets
from app.features.bootstrap.seeder import BootstrapSeeder
from app.features.permissions.registry import get_registry
from app.utils import get_logger


log = get_logger(__name__)


async def main() -> int:
    """Main function to seed baseline data."""
    log.info("Starting bootstrap seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    seeder = BootstrapSeeder(AsyncSessionLocal, get_registry(), SeedDatasets.from_directory())
    report = await seeder.run()

    if not report.ran:
        log.info("Seeding did not run (another instance holds the lock)")
        return 0

    for stage in report.stages:
        log.info(f"  - {stage.name}: {stage.status} ({stage.count})")
        if stage.message:
            log.info(f"      {stage.message}")

    if report.failed:
        log.error("Seeding finished with failed stages")
        return 1

    log.info("Seeding completed successfully!")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
