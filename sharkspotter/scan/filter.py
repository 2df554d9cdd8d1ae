from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from ..config import (
    FILTER_DUPLICATES,
    FILTER_NUM_COPIES,
    FILTER_SHARK,
    Config,
)
from ..errors import ConfigError
from .record import Record


class SelectionPredicate:
    """记录筛选条件的基类。"""


@dataclass(frozen=True)
class ByLocation(SelectionPredicate):
    """记录所在的存储节点与 locations 有交集即命中，每个交集节点命中一次。"""

    locations: Tuple[str, ...]

    @classmethod
    def of(cls, locations: Iterable[str]) -> "ByLocation":
        # 去重但保持给定顺序
        return cls(tuple(dict.fromkeys(locations)))


@dataclass(frozen=True)
class ByCopyCount(SelectionPredicate):
    """副本数大于 num_copies 即命中一次（不带节点）。"""

    num_copies: int


@dataclass(frozen=True)
class Unfiltered(SelectionPredicate):
    """所有对象记录都命中一次，用于重复检测。"""


def matches(record: Record, predicate: SelectionPredicate) -> List[Optional[str]]:
    """返回命中的存储节点列表；None 表示命中但不对应具体节点。"""
    if isinstance(predicate, ByLocation):
        present = set(record.sharks)
        return [loc for loc in predicate.locations if loc in present]
    if isinstance(predicate, ByCopyCount):
        return [None] if len(record.sharks) > predicate.num_copies else []
    if isinstance(predicate, Unfiltered):
        return [None]
    raise TypeError(f"unknown predicate {predicate!r}")


def predicate_from_config(config: Config) -> SelectionPredicate:
    if config.filter_type == FILTER_SHARK:
        return ByLocation.of(config.sharks)
    if config.filter_type == FILTER_NUM_COPIES:
        return ByCopyCount(int(config.num_copies))
    if config.filter_type == FILTER_DUPLICATES:
        return Unfiltered()
    raise ConfigError(f"unknown filter type {config.filter_type!r}")
