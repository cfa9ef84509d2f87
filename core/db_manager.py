# core/db_manager.py
from typing import Any

import structlog
from neo4j import (  # type: ignore
    AsyncDriver,
    AsyncGraphDatabase,
    AsyncManagedTransaction,
)
from neo4j.exceptions import ServiceUnavailable  # type: ignore

from config import settings
from kg_constants import ENTITY_BASE_LABEL

logger = structlog.get_logger(__name__)


class Neo4jManagerSingleton:
    _instance = None

    def __new__(cls, *args, **kwargs):
        if not cls._instance:
            cls._instance = super().__new__(cls)
            cls._instance._initialized_flag = False
        return cls._instance

    def __init__(self):
        if self._initialized_flag:
            return

        self.logger = structlog.get_logger(__name__)
        self.driver: AsyncDriver | None = None
        self._initialized_flag = True
        self.logger.info(
            "Neo4jManagerSingleton initialized. Call connect() to establish connection."
        )

    async def __aenter__(self) -> "Neo4jManagerSingleton":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def connect(self):
        if self.driver:
            self.logger.info(
                "Existing driver instance found. Attempting to close it before creating a new connection."
            )
            try:
                await self.driver.close()
            except Exception as e_close:
                self.logger.warning(
                    f"Error closing existing driver (it might have been already closed or invalid): {e_close}"
                )
            finally:
                self.driver = None

        try:
            self.driver = AsyncGraphDatabase.driver(
                settings.NEO4J_URI, auth=(settings.NEO4J_USER, settings.NEO4J_PASSWORD)
            )
            await self.driver.verify_connectivity()
            self.logger.info(f"Successfully connected to Neo4j at {settings.NEO4J_URI}")
        except ServiceUnavailable as e:
            self.logger.critical(
                f"Neo4j connection failed: {e}. Ensure the Neo4j database is running and accessible."
            )
            self.driver = None
            raise
        except Exception as e:
            self.logger.critical(
                f"Unexpected error during Neo4j connection: {e}", exc_info=True
            )
            self.driver = None
            raise

    async def close(self):
        if self.driver:
            try:
                await self.driver.close()
                self.logger.info("Neo4j driver closed.")
            except Exception as e:
                self.logger.error(
                    f"Error while closing Neo4j driver: {e}", exc_info=True
                )
            finally:
                self.driver = None
        else:
            self.logger.info("No active Neo4j driver to close (driver was None).")

    async def _ensure_connected(self):
        if self.driver is None:
            self.logger.info("Driver is None, attempting to connect.")
            await self.connect()

        if self.driver is None:
            raise ConnectionError("Neo4j driver not initialized or connection failed.")

    async def verify_connectivity(self) -> None:
        """Raise if the database cannot be reached right now."""
        await self._ensure_connected()
        await self.driver.verify_connectivity()  # type: ignore[union-attr]

    async def _execute_query_tx(
        self,
        tx: AsyncManagedTransaction,
        query: str,
        parameters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        self.logger.debug(f"Executing Cypher query: {query} with params: {parameters}")
        result_cursor = await tx.run(query, parameters)
        return await result_cursor.data()

    async def execute_read_query(
        self, query: str, parameters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        await self._ensure_connected()
        async with self.driver.session(database=settings.NEO4J_DATABASE) as session:  # type: ignore
            return await session.execute_read(self._execute_query_tx, query, parameters)

    async def execute_write_query(
        self, query: str, parameters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        await self._ensure_connected()
        async with self.driver.session(database=settings.NEO4J_DATABASE) as session:  # type: ignore
            return await session.execute_write(
                self._execute_query_tx, query, parameters
            )

    async def execute_cypher_batch(
        self, cypher_statements_with_params: list[tuple[str, dict[str, Any]]]
    ):
        if not cypher_statements_with_params:
            self.logger.info("execute_cypher_batch: No statements to execute.")
            return

        await self._ensure_connected()
        async with self.driver.session(database=settings.NEO4J_DATABASE) as session:  # type: ignore
            tx = await session.begin_transaction()
            try:
                for query, params in cypher_statements_with_params:
                    self.logger.debug(f"Batch Cypher: {query} with params {params}")
                    await tx.run(query, params)
                await tx.commit()
                self.logger.info(
                    f"Successfully executed batch of {len(cypher_statements_with_params)} Cypher statements."
                )
            except Exception as e:
                self.logger.error(
                    f"Error in Cypher batch execution: {e}. Rolling back.",
                    exc_info=True,
                )
                if not tx.closed():
                    await tx.rollback()
                raise

    async def _run_schema_operations(
        self, queries: list[str], description: str
    ) -> None:
        ops: list[tuple[str, dict[str, Any]]] = [(q, {}) for q in queries]
        try:
            await self.execute_cypher_batch(ops)
            self.logger.info(f"Successfully executed {description} batch.")
        except Exception as e:
            self.logger.error(
                f"Error during {description} batch execution: {e}", exc_info=True
            )
            self.logger.warning(
                "Attempting to apply operations individually as a fallback."
            )
            for query_text in queries:
                try:
                    await self.execute_write_query(query_text)
                except Exception as individual_e:
                    self.logger.warning(
                        f"Fallback: Failed to apply operation '{query_text[:100]}...': {individual_e}"
                    )

    async def create_db_schema(self) -> None:
        """Create and verify the entity constraint, indexes and vector index.

        All statements are idempotent `CREATE ... IF NOT EXISTS`; a failed batch
        falls back to executing the statements one by one.
        """
        self.logger.info("Creating/verifying Neo4j schema elements...")
        await self._run_schema_operations(
            [
                f"CREATE CONSTRAINT entity_id_unique IF NOT EXISTS FOR (e:{ENTITY_BASE_LABEL}) REQUIRE e.id IS UNIQUE",
            ],
            "constraint",
        )
        await self._run_schema_operations(
            [
                f"CREATE INDEX entity_name_property_idx IF NOT EXISTS FOR (e:{ENTITY_BASE_LABEL}) ON (e.name)",
                f"CREATE INDEX entity_type_property_idx IF NOT EXISTS FOR (e:{ENTITY_BASE_LABEL}) ON (e.type)",
            ],
            "index",
        )
        vector_query = f"""
        CREATE VECTOR INDEX {settings.NEO4J_VECTOR_INDEX_NAME} IF NOT EXISTS
        FOR (e:{settings.NEO4J_VECTOR_NODE_LABEL}) ON (e.{settings.NEO4J_VECTOR_PROPERTY_NAME})
        OPTIONS {{indexConfig: {{
            `vector.dimensions`: {settings.NEO4J_VECTOR_DIMENSIONS},
            `vector.similarity_function`: '{settings.NEO4J_VECTOR_SIMILARITY_FUNCTION}'
        }}}}
        """
        await self._run_schema_operations([vector_query], "vector index")
        self.logger.info("Neo4j schema verification complete.")


neo4j_manager = Neo4jManagerSingleton()
