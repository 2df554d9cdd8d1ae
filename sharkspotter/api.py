import logging
import threading
from typing import Callable, Optional

from .config import FILTER_SHARK, Config, fix_shark_domains, validate_config
from .dedup.ledger import DuplicateLedger
from .dedup.reconciler import DuplicateReconciler, LedgerSink
from .errors import ConfigError, RunErrorSet, SharkspotterError
from .registry.etcd import StorageNodeRegistry
from .scan.channel import ScanChannel
from .scan.filter import Unfiltered, predicate_from_config
from .scan.orchestrator import ClientFactory, ScanOrchestrator
from .scan.record import Record
from .scan.sink import ChannelSink
from .shard.factory import ShardClientFactory
from .stats import ScanStats

logger = logging.getLogger("Sharkspotter")

MatchHandler = Callable[[Record, Optional[str], int], None]


def prepare_config(config: Config, registry: Optional[StorageNodeRegistry] = None) -> Config:
    """校验配置、补全 shark 域名，并在需要时确认 shark 已注册。"""
    validate_config(config)
    if config.sharks:
        config.sharks = fix_shark_domains(config.sharks, config.domain)

    if config.sharks and not config.skip_validate_sharks:
        try:
            registry = registry or StorageNodeRegistry.from_config(config)
            registry.validate_sharks(config.sharks)
        except SharkspotterError:
            raise
        except Exception as e:
            raise ConfigError(f"failed to validate sharks: {e}") from e
    return config


def _client_factory(config: Config, client_factory: Optional[ClientFactory]) -> ClientFactory:
    return client_factory if client_factory is not None else ShardClientFactory(config)


def run(
    config: Config,
    handler: MatchHandler,
    client_factory: Optional[ClientFactory] = None,
    registry: Optional[StorageNodeRegistry] = None,
    stats: Optional[ScanStats] = None,
) -> None:
    """扫描所有 shard，对每条命中记录调用 handler(record, shark, shard)。

    handler 在调用者线程中执行；handler 抛出异常时断开通道、
    等待所有 worker 退出后重新抛出。运行中记录的错误在最后一并以
    RunFailed（或致命错误本身）抛出。
    """
    prepare_config(config, registry)
    stats = stats or ScanStats()
    channel = ScanChannel(config.channel_capacity)
    orchestrator = ScanOrchestrator(
        config,
        _client_factory(config, client_factory),
        predicate_from_config(config),
        ChannelSink(channel),
        stats=stats,
    )

    failure = []

    def _orchestrate():
        try:
            orchestrator.run()
        except BaseException as e:
            failure.append(e)
            channel.close()

    thread = threading.Thread(target=_orchestrate, name="sharkspotter_orchestrator", daemon=True)
    thread.start()

    try:
        for match in channel:
            handler(match.record, match.shark, match.shard)
    except BaseException:
        logger.error("handler failed, shutting down scan")
        channel.close_receiver()
        thread.join()
        raise

    thread.join()
    stats.log_stats()
    if failure:
        raise failure[0]
    orchestrator.errors.raise_if_errors()


def run_multithreaded(
    config: Config,
    channel: ScanChannel,
    client_factory: Optional[ClientFactory] = None,
    registry: Optional[StorageNodeRegistry] = None,
    stats: Optional[ScanStats] = None,
) -> None:
    """与 run 相同，但把命中记录（ScanMatch）写入调用者提供的通道。

    在调用者线程中阻塞到所有 worker 结束，结束时关闭通道。
    """
    prepare_config(config, registry)
    stats = stats or ScanStats()
    errors = ScanOrchestrator(
        config,
        _client_factory(config, client_factory),
        predicate_from_config(config),
        ChannelSink(channel),
        stats=stats,
    ).run()
    stats.log_stats()
    errors.raise_if_errors()


def run_duplicate_detector(
    config: Config,
    ledger: Optional[DuplicateLedger] = None,
    client_factory: Optional[ClientFactory] = None,
    registry: Optional[StorageNodeRegistry] = None,
    stats: Optional[ScanStats] = None,
) -> DuplicateLedger:
    """扫描所有对象，把跨 shard 的重复对象记录到本地账本中并返回账本。"""
    if config.filter_type == FILTER_SHARK:
        logger.warning("duplicate detection ignores the shark filter, scanning all objects")
    prepare_config(config, registry)
    stats = stats or ScanStats()
    if ledger is None:
        ledger = DuplicateLedger.from_config(config)
    else:
        ledger.create_tables()

    errors = RunErrorSet()
    stop_event = threading.Event()
    dup_channel = ScanChannel(config.channel_capacity)
    reconciler = DuplicateReconciler(
        ledger,
        dup_channel,
        errors,
        stats=stats,
        num_threads=config.dup_handler_threads,
        stop_event=stop_event,
    )
    reconciler.start()

    orchestrator = ScanOrchestrator(
        config,
        _client_factory(config, client_factory),
        Unfiltered(),
        LedgerSink(ledger, dup_channel, stats),
        stats=stats,
        errors=errors,
        stop_event=stop_event,
    )
    try:
        orchestrator.run()
    finally:
        # run() 结束时已关闭重复通道，处理线程清空后退出
        dup_channel.close()
        reconciler.join()

    stats.log_stats()
    logger.info(
        f"Ledger {ledger.path}: {ledger.stub_count()} objects, "
        f"{ledger.duplicate_count()} duplicates"
    )
    errors.raise_if_errors()
    return ledger
