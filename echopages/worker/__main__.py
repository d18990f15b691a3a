import asyncio
import logging

from sqlmodel import SQLModel
from echopages.config import LOG_LEVEL
from echopages.database_con import engine
from echopages.worker.runner import Worker


def main():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    SQLModel.metadata.create_all(engine)
    asyncio.run(Worker().run())


if __name__ == "__main__":
    main()
