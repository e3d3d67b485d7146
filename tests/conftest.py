import os
from copy import deepcopy
from datetime import datetime, timedelta, timezone
from typing import Self
from urllib.parse import urlparse

import pytest_asyncio
from pydantic import BaseModel
from testcontainers.postgres import PostgresContainer
from tortoise import Tortoise

from tests.models import Reply, Topic


class DatabaseConfig(BaseModel):
    host: str | None = None
    port: int = 5432
    username: str | None = None
    password: str | None = None
    name: str | None = None

    @property
    def connection_string(self) -> str:
        return f"postgres://{self.username}:{self.password}@{self.host}:{self.port}/{self.name}"

    @classmethod
    def from_connection_string(cls, connection_string: str) -> Self:
        result = urlparse(connection_string)
        if "postgres" not in result.scheme:
            raise ValueError(f"Not valid URL schema: {result.scheme}")

        return cls(
            name=result.path[1:],
            username=result.username,
            password=result.password,
            host=result.hostname,
            port=result.port,
        )


TORTOISE_CONFIG = {
    "connections": {"default": "sqlite://:memory:"},
    "apps": {
        "default": {
            "models": ["tests.models"],
            "default_connection": "default",
        },
    },
    "use_tz": True,
    "timezone": "UTC",
}


def get_postgres_container() -> tuple[PostgresContainer, DatabaseConfig]:
    container = PostgresContainer("postgres:16-alpine")
    container.start()
    db_config = DatabaseConfig.from_connection_string(container.get_connection_url())
    return (container, db_config)


async def load_fixtures() -> None:
    now = datetime.now(timezone.utc)
    futurama = await Topic.create(
        title="Isnt futurama awesome?",
        content="I like futurama",
        created_at=now - timedelta(days=1),
    )
    harvey_birdman = await Topic.create(
        title="Harvey Birdman is the king of all men",
        content="he really is",
        created_at=now - timedelta(hours=5),
    )
    rails = await Topic.create(
        title="Rails is nice",
        content="It makes me happy",
        created_at=now - timedelta(minutes=20),
    )
    await Topic.create(
        title="ActiveRecord sometimes freaks out",
        content="but we still love it",
        created_at=now - timedelta(minutes=15),
    )

    await Reply.create(
        topic=harvey_birdman,
        content="Birdman is better!",
        created_at=now - timedelta(hours=4),
    )
    await Reply.create(
        topic=rails,
        content="Nuh uh!",
        created_at=now - timedelta(minutes=10),
    )
    await Reply.create(
        topic=rails,
        content="Nuh uh, it really is",
        created_at=now - timedelta(minutes=5),
    )
    await Reply.create(
        topic=futurama,
        content="It is, isn't it",
        created_at=now - timedelta(hours=20),
    )


@pytest_asyncio.fixture(scope="session", loop_scope="session", autouse=True)
async def initialize_tests():
    # TORTOISE_TEST_DB=postgres runs the suite against a throwaway container
    postgres_container = None
    test_config = deepcopy(TORTOISE_CONFIG)
    if os.environ.get("TORTOISE_TEST_DB") == "postgres":
        postgres_container, db_config = get_postgres_container()
        test_config["connections"]["default"] = db_config.connection_string

    await Tortoise.init(config=test_config)
    await Tortoise.generate_schemas(safe=False)
    await load_fixtures()

    yield

    await Tortoise.close_connections()
    if postgres_container:
        postgres_container.stop(delete_volume=True, force=True)
