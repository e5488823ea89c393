#!/usr/bin/env python3
"""
Database initialisation script.
Creates the tables, the default admin user and a few sample servers.
"""

import asyncio
import logging
import os

from infrapulse.core.config import settings
from infrapulse.core.database import Database
from infrapulse.models import ServerStatus, UserRole
from infrapulse.schemas.server import ServerCreate
from infrapulse.schemas.user import UserCreate
from infrapulse.services.server import ServerService
from infrapulse.services.user import UserService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SAMPLE_SERVERS = [
    ("Production DB 01", "db-prod-01", "10.0.1.10", ServerStatus.ONLINE, "Ubuntu 22.04", 8, 32, 500, "Data Center A", "Database"),
    ("Web Server 01", "web-01", "10.0.1.20", ServerStatus.ONLINE, "CentOS 7", 4, 16, 100, "Data Center A", "Web Services"),
    ("API Gateway", "api-gw-01", "10.0.1.30", ServerStatus.ONLINE, "Ubuntu 20.04", 4, 8, 50, "Data Center B", "API Services"),
    ("Redis Cache", "redis-01", "10.0.1.40", ServerStatus.ONLINE, "Debian 11", 2, 4, 20, "Data Center A", "Caching"),
    ("Monitoring Server", "mon-01", "10.0.1.50", ServerStatus.ONLINE, "Ubuntu 22.04", 4, 16, 200, "Data Center B", "Monitoring"),
    ("Backup Server", "backup-01", "10.0.1.60", ServerStatus.OFFLINE, "Ubuntu 22.04", 2, 8, 2000, "Data Center A", "Backup"),
]

async def init_database():
    """Initialise the database"""
    logger.info("Initialising database...")

    database = Database(settings)
    try:
        await database.create_all()

        async with database.session() as db:
            user_service = UserService(db)
            if not await user_service.get_user_by_username("admin"):
                admin_data = UserCreate(
                    username="admin",
                    email="admin@monitoring.local",
                    # change in production
                    password=os.getenv("INFRAPULSE_ADMIN_PASSWORD", "Admin123!"),
                    role=UserRole.ADMIN,
                    full_name="System Administrator",
                    is_active=True,
                )
                admin_user = await user_service.create_user(admin_data)
                logger.info(f"Created default admin user: {admin_user.username}")
            else:
                logger.info("Admin user already exists, skipping")

            server_service = ServerService(db)
            for name, hostname, ip, status, os_name, cores, memory, storage, location, department in SAMPLE_SERVERS:
                if await server_service.get_server_by_hostname(hostname):
                    continue
                server = await server_service.create_server(
                    ServerCreate(
                        name=name,
                        hostname=hostname,
                        ip_address=ip,
                        status=status,
                        os=os_name,
                        cpu_cores=cores,
                        memory_gb=memory,
                        storage_gb=storage,
                        location=location,
                        department=department,
                    )
                )
                logger.info(f"Created sample server: {server.name}")
    finally:
        await database.dispose()

    logger.info("Database initialisation complete")

if __name__ == "__main__":
    asyncio.run(init_database())
