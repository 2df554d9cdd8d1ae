from .chunk import ChunkCursor, ChunkWindow
from .record import Record, record_from_row, parse_max_id_value
from .filter import ByCopyCount, ByLocation, SelectionPredicate, Unfiltered, matches, predicate_from_config
from .channel import ScanChannel
from .sink import ChannelSink, MatchSink, ScanMatch
from .worker import scan_shard
from .orchestrator import ScanOrchestrator
