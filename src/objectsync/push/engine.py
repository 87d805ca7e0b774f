"""Wiring for the push engine's production collaborators.

build_push_engine() assembles the Salesforce client, repositories, Redis lock
store and queue, extension registry, policy, executor, orchestrator, dispatch
table and worker from Settings. The FastAPI lifespan and the push_record
script both use it.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable

import redis.asyncio as aioredis
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.objectsync.config import Settings
from src.objectsync.core.redis import NamespacedRedis
from src.objectsync.push.dispatch import DispatchTable
from src.objectsync.push.executor import RemoteSyncExecutor
from src.objectsync.push.extensions import ExtensionRegistry
from src.objectsync.push.fieldmaps import FieldmapRepository
from src.objectsync.push.local import SqlLocalStore, TableStructureRegistry
from src.objectsync.push.loop_guard import LoopGuard
from src.objectsync.push.orchestrator import PushOrchestrator
from src.objectsync.push.policy import PushPolicy
from src.objectsync.push.queue import RedisStreamTaskQueue
from src.objectsync.push.repository import MappingObjectRepository
from src.objectsync.push.schemas import TableStructure
from src.objectsync.push.sync_log import StructlogSyncLogger
from src.objectsync.push.worker import PushJobWorker
from src.objectsync.remote.salesforce import SalesforceClient

logger = structlog.get_logger(__name__)


class PushEngine:
    """Holder for the wired push engine components."""

    def __init__(
        self,
        remote: SalesforceClient,
        fieldmaps: FieldmapRepository,
        mappings: MappingObjectRepository,
        extensions: ExtensionRegistry,
        executor: RemoteSyncExecutor,
        orchestrator: PushOrchestrator,
        dispatch_table: DispatchTable,
        worker: PushJobWorker,
    ) -> None:
        self.remote = remote
        self.fieldmaps = fieldmaps
        self.mappings = mappings
        self.extensions = extensions
        self.executor = executor
        self.orchestrator = orchestrator
        self.dispatch_table = dispatch_table
        self.worker = worker


async def build_push_engine(
    settings: Settings,
    redis_client: aioredis.Redis,
    session_factory: Callable[..., AsyncGenerator[AsyncSession, None]],
    extensions: ExtensionRegistry | None = None,
) -> PushEngine:
    """Assemble the push engine.

    Table structures and dispatch rows are registered for every local object
    type that has a fieldmap; other object types are rejected as
    configuration errors.

    Args:
        settings: Application settings.
        redis_client: Raw async Redis client (decode_responses=True).
        session_factory: Async callable that yields AsyncSession instances.
        extensions: Pre-populated extension registry, if callbacks are
            registered before startup.

    Returns:
        The wired PushEngine.
    """
    extensions = extensions or ExtensionRegistry()

    remote = SalesforceClient(
        instance_url=settings.SALESFORCE_INSTANCE_URL,
        access_token=settings.SALESFORCE_ACCESS_TOKEN,
        api_version=settings.SALESFORCE_API_VERSION,
        timeout=settings.SALESFORCE_TIMEOUT,
        max_retries=settings.SALESFORCE_MAX_RETRIES,
    )
    fieldmaps = FieldmapRepository(session_factory=session_factory)
    mappings = MappingObjectRepository(session_factory=session_factory)

    configured = await fieldmaps.get_fieldmaps()
    structures = TableStructureRegistry(allow_default=False)
    for object_type in {fm.local_object_type for fm in configured}:
        structures.register(TableStructure(object_type=object_type))
    local = SqlLocalStore(session_factory=session_factory, structures=structures)

    lock_store = NamespacedRedis(redis_client, prefix=settings.LOCK_KEY_PREFIX)
    loop_guard = LoopGuard(lock_store)
    queue = RedisStreamTaskQueue(
        redis_client,
        frequency=settings.PUSH_QUEUE_FREQUENCY_SECONDS,
        maxlen=settings.PUSH_STREAM_MAXLEN,
    )
    sync_logger = StructlogSyncLogger(debug_mode=settings.DEBUG_MODE)

    executor = RemoteSyncExecutor(
        remote=remote,
        mappings=mappings,
        fieldmaps=fieldmaps,
        local=local,
        loop_guard=loop_guard,
        lock_store=lock_store,
        queue=queue,
        sync_logger=sync_logger,
        extensions=extensions,
        grace_seconds=settings.LOOP_GUARD_GRACE_SECONDS,
        default_frequency=settings.PUSH_QUEUE_FREQUENCY_SECONDS,
    )
    orchestrator = PushOrchestrator(
        fieldmaps=fieldmaps,
        mappings=mappings,
        local=local,
        loop_guard=loop_guard,
        policy=PushPolicy(mappings, extensions),
        executor=executor,
        queue=queue,
        sync_logger=sync_logger,
        queue_name=settings.PUSH_QUEUE_NAME,
        callback_id=settings.PUSH_CALLBACK_ID,
    )
    dispatch_table = DispatchTable.from_fieldmaps(orchestrator, local, configured)
    worker = PushJobWorker(
        queue=queue,
        executor=executor,
        queue_name=settings.PUSH_QUEUE_NAME,
        callback_id=settings.PUSH_CALLBACK_ID,
    )

    logger.info(
        "push_engine.built",
        fieldmaps=len(configured),
        object_types=dispatch_table.object_types,
        remote_authorized=remote.is_authorized(),
    )
    return PushEngine(
        remote=remote,
        fieldmaps=fieldmaps,
        mappings=mappings,
        extensions=extensions,
        executor=executor,
        orchestrator=orchestrator,
        dispatch_table=dispatch_table,
        worker=worker,
    )
