# orchestration/cli_runner.py
"""Command-line runner for the knowledge orchestrator."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from pathlib import Path

import structlog
from rich.console import Console

from core.db_manager import neo4j_manager
from core.generation_client import generation_client
from core.llm_interface import llm_service
from data_access import knowledge_store, semantic_index
from utils import setup_logging

from orchestration.orchestrator import KnowledgeOrchestrator
from orchestration.query_service import QueryService

logger = structlog.get_logger(__name__)

console = Console()


def read_observations(lines: Iterable[str]) -> list[str]:
    """Non-blank, stripped lines; ``#`` starts a comment line."""
    return [
        line.strip()
        for line in lines
        if line.strip() and not line.lstrip().startswith("#")
    ]


async def _answer_queries(queries: Sequence[str]) -> int:
    service = QueryService()
    failures = 0
    for question in queries:
        try:
            answer = await service.answer_query(question)
        except ValueError as exc:
            logger.warning("Skipping query", error=str(exc))
            continue
        console.print_json(data=answer.to_dict(), default=str)
        if not answer.success:
            failures += 1
    return failures


async def _run(
    orchestrator: KnowledgeOrchestrator,
    observations: list[str],
    init_schema: bool,
    seed: bool,
    show_stats: bool,
    queries: Sequence[str] = (),
    visualize: bool = False,
) -> int:
    failures = 0
    if init_schema:
        await neo4j_manager.create_db_schema()
    if seed:
        count = await knowledge_store.seed_base_ontology()
        console.print(f"Seeded base ontology ({count} statements).")

    for observation in observations:
        try:
            result = await orchestrator.run_orchestration(observation)
        except ValueError as exc:
            logger.warning("Skipping observation", error=str(exc))
            continue
        console.print_json(data=result.to_dict(), default=str)
        if not result.success:
            failures += 1

    if queries:
        failures += await _answer_queries(queries)

    if visualize:
        console.print_json(
            data=await knowledge_store.get_visualization_data(), default=str
        )

    if show_stats:
        console.print_json(
            data={
                **orchestrator.get_system_metrics(),
                "generation_client": generation_client.get_metrics(),
                "semantic_index": semantic_index.get_metrics(),
                "graph": await knowledge_store.get_graph_stats(),
            },
            default=str,
        )
    return failures


async def _shutdown() -> None:
    await neo4j_manager.close()
    await llm_service.aclose()


def run(
    observations: list[str],
    observation_file: str | None = None,
    init_schema: bool = False,
    seed: bool = False,
    show_stats: bool = False,
    no_critic: bool = False,
    queries: Sequence[str] = (),
    visualize: bool = False,
) -> int:
    """Initialize the orchestrator, process observations and queries, return failures."""
    setup_logging()
    if observation_file:
        with Path(observation_file).open(encoding="utf-8") as handle:
            observations = [*observations, *read_observations(handle)]

    orchestrator = KnowledgeOrchestrator(enable_critic=False if no_critic else None)

    async def _main() -> int:
        try:
            return await _run(
                orchestrator,
                observations,
                init_schema,
                seed,
                show_stats,
                queries=queries,
                visualize=visualize,
            )
        finally:
            await _shutdown()

    try:
        return asyncio.run(_main())
    except KeyboardInterrupt:
        logger.info("Orchestrator shutting down due to KeyboardInterrupt...")
        return 130
    except Exception as main_err:  # pragma: no cover - entry point catch
        logger.critical(
            "Orchestrator encountered an unhandled exception: %s",
            main_err,
            exc_info=True,
        )
        return 1
