"""
Seed script to populate default permissions and roles.

Run this script after database initialization to create:
- Default permissions
- Default roles (Admin, Editor, Viewer)
- Initial role-permission assignments
- An Admin user, when DEFAULT_ADMIN_USERNAME and DEFAULT_ADMIN_EMAIL are set

Usage:
    uv run python -m scripts.seed_permissions
"""
import asyncio

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.rbac.constants import DEFAULT_ROLES
from app.features.rbac.seed import seed_reference_data
from app.utils import get_logger


log = get_logger(__name__)


async def main():
    """Main function to seed permissions and roles."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            summary = await seed_reference_data(
                db,
                admin_username=config.DEFAULT_ADMIN_USERNAME,
                admin_email=config.DEFAULT_ADMIN_EMAIL,
            )
            await db.commit()
        except Exception as e:
            log.error("Error seeding permissions: %s", e, exc_info=True)
            await db.rollback()
            raise

    log.info("Permission seeding completed successfully!")
    log.info("Created %d role-permission links", summary["links_created"])
    log.info("Default roles:")
    for role_name, description in DEFAULT_ROLES:
        log.info("  - %s: %s", role_name, description)
    if summary["admin_user_id"]:
        log.info("Admin user id: %s", summary["admin_user_id"])


if __name__ == "__main__":
    asyncio.run(main())
