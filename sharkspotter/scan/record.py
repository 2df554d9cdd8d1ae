import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import MalformedRecordError

logger = logging.getLogger("SharkspotterRecord")

# 只有 type 为 object 的行才是真正落盘的对象（目录/链接除外）
OBJECT_TYPE = "object"


@dataclass
class Record:
    """
    manta 表中的一行对象元数据。

    - id: objectId，跨 shard 判断重复的逻辑主键
    - key: 对象路径
    - etag: 行的 _etag
    - sharks: 对象所在的存储节点（manta_storage_id），保持原始顺序
    - value: 解析后的 _value 文档
    - raw: 原始行
    """

    id: str
    key: str
    etag: str
    sharks: List[str]
    type: str
    value: Dict[str, Any]
    raw: Dict[str, Any] = field(repr=False, default_factory=dict)


def manta_obj_from_moray_obj(row: Dict[str, Any]) -> Dict[str, Any]:
    """取出行中的 "_value"（对象元数据）。

    direct db 的行里 _value 是 JSON 字符串，moray 返回的行里也可能已经是对象。
    """
    if "_value" not in row:
        raise MalformedRecordError(f"Missing '_value' in moray entry {row!r}")
    val = row["_value"]
    if isinstance(val, dict):
        return val
    if not isinstance(val, (str, bytes, bytearray)):
        raise MalformedRecordError(f"Could not format entry as string {val!r}")
    try:
        obj = json.loads(val)
    except ValueError as e:
        raise MalformedRecordError(f"Could not format entry as object {val!r} ({e})") from e
    if not isinstance(obj, dict):
        raise MalformedRecordError(f"Could not format entry as object {val!r}")
    return obj


def sharks_from_manta_obj(value: Dict[str, Any]) -> List[str]:
    sharks = value.get("sharks")
    if sharks is None:
        raise MalformedRecordError(f"Missing 'sharks' field {value!r}")
    if not isinstance(sharks, list):
        raise MalformedRecordError(f"Sharks are not in an array {sharks!r}")
    out: List[str] = []
    for shark in sharks:
        storage_id = shark.get("manta_storage_id") if isinstance(shark, dict) else None
        if not isinstance(storage_id, str):
            raise MalformedRecordError(f"Could not deserialize sharks value {sharks!r}")
        out.append(storage_id)
    return out


def object_id_from_manta_obj(value: Dict[str, Any], row: Optional[Dict[str, Any]] = None) -> str:
    obj_id = value.get("objectId")
    if obj_id is None and row is not None:
        obj_id = row.get("objectid")
    if obj_id is None:
        raise MalformedRecordError(f"Missing 'objectId' in Manta Object {value!r}")
    if not isinstance(obj_id, str):
        raise MalformedRecordError(f"Could not format objectId ({obj_id!r}) as string")
    return obj_id


def etag_from_moray_value(row: Dict[str, Any]) -> str:
    if row.get("_etag") is None:
        raise MalformedRecordError(f"Missing etag: {row!r}")
    return str(row["_etag"]).replace('"', "").strip()


def key_from_row(row: Dict[str, Any], value: Dict[str, Any]) -> str:
    for candidate in (row.get("_key"), row.get("key"), value.get("key")):
        if isinstance(candidate, str):
            return candidate
    raise MalformedRecordError(f"Missing key in moray entry {row!r}")


def record_type(row: Dict[str, Any], value: Optional[Dict[str, Any]] = None) -> Optional[str]:
    rtype = row.get("type")
    if rtype is None and value is not None:
        rtype = value.get("type")
    return rtype


def record_from_row(row: Dict[str, Any]) -> Record:
    """把一行原始数据解析为 Record，任何缺失字段都抛出 MalformedRecordError。"""
    if not isinstance(row, dict):
        raise MalformedRecordError(f"Entry is not an object {row!r}")
    value = manta_obj_from_moray_obj(row)
    return Record(
        id=object_id_from_manta_obj(value, row),
        key=key_from_row(row, value),
        etag=etag_from_moray_value(row),
        sharks=sharks_from_manta_obj(value),
        type=record_type(row, value) or OBJECT_TYPE,
        value=value,
        raw=row,
    )


def parse_max_id_value(val: Any) -> int:
    """解析 SELECT MAX(<id>) 的返回值。

    期望的形式为 [{"max": <value>}]，<value> 是数字或十进制字符串；
    空表时 <value> 为 None，按 0 处理。
    """
    if not isinstance(val, list):
        raise MalformedRecordError("Expected array")
    if len(val) != 1:
        raise MalformedRecordError(f"Expected single element got {len(val)}")
    entry = val[0]
    if not isinstance(entry, dict) or "max" not in entry:
        raise MalformedRecordError("Query missing 'max' value")

    max_val = entry["max"]
    if max_val is None:
        return 0
    # bool 是 int 的子类，需要单独排除
    if isinstance(max_val, bool):
        raise MalformedRecordError("Error max value was not a string or a number")
    if isinstance(max_val, int):
        if max_val < 0:
            raise MalformedRecordError("Error converting number to u64")
        return max_val
    if isinstance(max_val, str):
        logger.debug("Parsing largest id value as String")
        try:
            num = int(max_val)
        except ValueError as e:
            raise MalformedRecordError(f"Error parsing max value as String: {e}") from e
        if num < 0:
            raise MalformedRecordError("Error converting number to u64")
        return num
    logger.debug("largest id value is unknown variant %r", max_val)
    raise MalformedRecordError("Error max value was not a string or a number")
