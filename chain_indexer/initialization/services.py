"""
Initialization - Services Module.

Builds the indexer object graph from settings.
"""

from dataclasses import dataclass
from functools import partial

from loguru import logger
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from chain_indexer.config.chains import resolve_rpc_endpoints
from chain_indexer.config.settings import Settings
from chain_indexer.services.blockchain.explorer_client import ExplorerClient
from chain_indexer.services.blockchain.provider_registry import ProviderRegistry
from chain_indexer.services.indexer.anomaly_detector import AnomalyDetector
from chain_indexer.services.indexer.chunk_manager import ChunkManager
from chain_indexer.services.indexer.contract_fetcher import ContractFetcher
from chain_indexer.services.indexer.deployment_block_finder import DeploymentBlockFinder
from chain_indexer.services.indexer.horizontal_validator import HorizontalValidator
from chain_indexer.services.indexer.indexer_manager import IndexerManager
from chain_indexer.services.indexer.notifications import (
    BufferedSink,
    LoggingSink,
    ProgressNotifier,
)
from chain_indexer.services.indexer.rpc_endpoint_pool import RPCEndpointPool
from chain_indexer.services.indexer.streaming_indexer import IndexerComponents
from chain_indexer.services.monitoring.health_monitor import HealthMonitor
from chain_indexer.services.monitoring.metrics_collector import MetricsCollector
from chain_indexer.services.storage.file_storage import FileStorageManager
from chain_indexer.services.storage.snapshot_store import (
    FileSnapshotStore,
    SnapshotStore,
    SqlSnapshotStore,
)
from chain_indexer.utils.circuit_breaker import CircuitBreakerRegistry
from chain_indexer.utils.retry import RetryPolicy


@dataclass
class IndexerServices:
    """Every long-lived service of the process."""

    pool: RPCEndpointPool
    fetcher: ContractFetcher
    explorer: ExplorerClient
    manager: IndexerManager
    monitor: HealthMonitor
    metrics: MetricsCollector
    notifier: ProgressNotifier
    buffered_sink: BufferedSink
    snapshot_store: SnapshotStore
    file_storage: FileStorageManager | None = None
    engine: AsyncEngine | None = None


def create_snapshot_store(
    app_settings: Settings,
) -> tuple[SnapshotStore, FileStorageManager | None, AsyncEngine | None]:
    """
    Select the snapshot backend: SQL when DATABASE_URL is set, files otherwise.

    Returns:
        Tuple of (store, file storage or None, engine or None)
    """
    if app_settings.database_url:
        engine = create_async_engine(
            app_settings.database_url,
            echo=app_settings.database_echo,
            pool_pre_ping=True,
        )
        session_maker = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        logger.info("Snapshot store: SQL")
        return SqlSnapshotStore(session_maker), None, engine

    storage = FileStorageManager(
        app_settings.data_dir,
        min_free_disk_percent=app_settings.min_free_disk_percent,
    )
    logger.info(f"Snapshot store: files in {app_settings.data_dir}")
    return FileSnapshotStore(storage), storage, None


def build_services(app_settings: Settings) -> IndexerServices:
    """
    Wire the indexer services.

    Args:
        app_settings: Application settings

    Returns:
        Constructed (not yet started) services
    """
    metrics = MetricsCollector()

    pool = RPCEndpointPool(
        resolver=partial(resolve_rpc_endpoints, app_settings=app_settings),
        failure_threshold=app_settings.endpoint_failure_threshold,
        probe_timeout=app_settings.health_probe_timeout,
        health_check_interval=app_settings.health_check_interval,
        environment=app_settings.environment,
    )

    breakers = CircuitBreakerRegistry(
        threshold=app_settings.circuit_breaker_threshold,
        timeout=app_settings.circuit_breaker_timeout,
    )
    retry_policy = RetryPolicy(
        max_retries=app_settings.max_retries,
        base_delay=app_settings.retry_delay_base,
        max_delay=app_settings.retry_max_delay,
        jitter=app_settings.retry_jitter,
    )
    fetcher = ContractFetcher(
        pool,
        retry_policy=retry_policy,
        breakers=breakers,
        providers=ProviderRegistry(timeout=app_settings.rpc_timeout),
        request_timeout=app_settings.rpc_timeout,
        metrics=metrics,
    )
    explorer = ExplorerClient(api_key=app_settings.explorer_api_key, breakers=breakers)

    components = IndexerComponents(
        pool=pool,
        fetcher=fetcher,
        deployment_finder=DeploymentBlockFinder(fetcher, explorer=explorer),
        chunk_manager=ChunkManager(
            fetcher,
            validator=HorizontalValidator(),
            chunk_size=app_settings.chunk_size,
            anomaly_detector=AnomalyDetector(),
            metrics=metrics,
        ),
        metrics=metrics,
    )

    buffered_sink = BufferedSink()
    notifier = ProgressNotifier(
        sinks=[LoggingSink(), buffered_sink],
        max_queue_size=app_settings.notification_queue_size,
    )
    snapshot_store, file_storage, engine = create_snapshot_store(app_settings)

    manager = IndexerManager(
        components,
        snapshot_store,
        notifier=notifier,
        polling_interval=app_settings.polling_interval,
        shutdown_timeout=app_settings.shutdown_timeout,
    )
    monitor = HealthMonitor(
        pool,
        manager=manager,
        snapshot_store=snapshot_store,
        notifier=notifier,
        metrics=metrics,
        breakers=breakers,
        interval=app_settings.health_monitor_interval,
    )

    return IndexerServices(
        pool=pool,
        fetcher=fetcher,
        explorer=explorer,
        manager=manager,
        monitor=monitor,
        metrics=metrics,
        notifier=notifier,
        buffered_sink=buffered_sink,
        snapshot_store=snapshot_store,
        file_storage=file_storage,
        engine=engine,
    )


async def start_services(services: IndexerServices, app_settings: Settings) -> None:
    """Start background loops (must run inside the event loop)."""
    if services.file_storage is not None:
        await services.file_storage.initialize()
    services.notifier.start()
    services.pool.start_health_checks(app_settings.health_check_interval)
    services.monitor.start_monitoring()
    logger.success("Indexer services started")
