from .errors import (
    SharkspotterError,
    ConfigError,
    MalformedRecordError,
    ShardQueryError,
    ScanError,
    ChannelDisconnected,
    EtagMismatch,
    LedgerError,
    LedgerCorruption,
    RunErrorSet,
    RunFailed
)

from .config import (
    Config,
    MAX_THREADS,
    validate_config,
    fix_shark_domains
)

from .scan import (
    ChunkCursor,
    ChunkWindow,
    Record,
    ByLocation,
    ByCopyCount,
    Unfiltered,
    matches,
    ScanChannel,
    ScanMatch,
    MatchSink,
    ScanOrchestrator
)

from .shard import (
    AbstractShardClient,
    InMemoryShardClient,
    PostgresShardClient,
    ShardClientFactory
)

from .dedup import (
    DuplicateLedger,
    DuplicateReconciler
)

from .registry import StorageNodeRegistry

from .api import (
    run,
    run_multithreaded,
    run_duplicate_detector
)

from .config_loader import (
    load_config_from_json,
    merge_config_with_defaults
)

__all__ = [
    # 错误
    'SharkspotterError',
    'ConfigError',
    'MalformedRecordError',
    'ShardQueryError',
    'ScanError',
    'ChannelDisconnected',
    'EtagMismatch',
    'LedgerError',
    'LedgerCorruption',
    'RunErrorSet',
    'RunFailed',

    # 扫描相关
    'ChunkCursor',
    'ChunkWindow',
    'Record',
    'ByLocation',
    'ByCopyCount',
    'Unfiltered',
    'matches',
    'ScanChannel',
    'ScanMatch',
    'MatchSink',
    'ScanOrchestrator',

    # shard 访问
    'AbstractShardClient',
    'InMemoryShardClient',
    'PostgresShardClient',
    'ShardClientFactory',
    'StorageNodeRegistry',

    # 重复检测
    'DuplicateLedger',
    'DuplicateReconciler',

    # 入口
    'run',
    'run_multithreaded',
    'run_duplicate_detector',

    # 配置相关
    'Config',
    'MAX_THREADS',
    'validate_config',
    'fix_shark_domains',
    'load_config_from_json',
    'merge_config_with_defaults'
]
