"""
Defines the pool stats snapshot document written by the pool.
Structure is validated strictly (objects where objects are expected); numeric leaves are
kept raw and coerced later by the normalizer, so a single odd value never rejects a snapshot.
"""
from typing import Annotated, Dict, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, field_validator


def _scalar_or_none(v):
    # Containers and booleans in a numeric slot are treated as absent
    if isinstance(v, (dict, list, bool)):
        return None
    return v


RawNumber = Annotated[Optional[Union[int, float, str]], BeforeValidator(_scalar_or_none)]


class HashrateWindows(BaseModel):
    model_config = ConfigDict(extra="ignore")

    hashrate_1m: RawNumber = None
    hashrate_5m: RawNumber = None
    hashrate_15m: RawNumber = None
    hashrate_1hr: RawNumber = None
    hashrate_6hr: RawNumber = None
    hashrate_1d: RawNumber = None
    hashrate_7d: RawNumber = None


class ShareRateWindows(BaseModel):
    model_config = ConfigDict(extra="ignore")

    shares_per_second_1m: RawNumber = None
    shares_per_second_5m: RawNumber = None
    shares_per_second_15m: RawNumber = None
    shares_per_second_1h: RawNumber = None


class WorkerRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    shares: RawNumber = None
    bestshare: RawNumber = None
    bestever: RawNumber = None
    lastshare: RawNumber = None
    computed_hash_rate: Optional[HashrateWindows] = None


class UserRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    authorised: RawNumber = None
    shares: RawNumber = None
    bestshare: RawNumber = None
    bestever: RawNumber = None
    computed_hash_rate: Optional[HashrateWindows] = None
    workers: Dict[str, WorkerRecord] = {}

    @field_validator("workers", mode="before")
    @classmethod
    def empty_workers(cls, v):
        return {} if v is None else v


class PoolSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    start_time: RawNumber = None
    lastupdate: RawNumber = None
    num_users: RawNumber = None
    num_workers: RawNumber = None
    num_idle_users: RawNumber = None
    accepted: RawNumber = None
    rejected: RawNumber = None
    bestshare: RawNumber = None
    difficulty: RawNumber = None
    computed_hashrate: Optional[HashrateWindows] = None
    computed_share_rate: Optional[ShareRateWindows] = None

    # Flat rollup fields, written by older pool versions instead of the nested objects
    hashrate_1m: RawNumber = None
    hashrate_5m: RawNumber = None
    hashrate_15m: RawNumber = None
    hashrate_1hr: RawNumber = None
    hashrate_6hr: RawNumber = None
    hashrate_1d: RawNumber = None
    hashrate_7d: RawNumber = None
    shares_per_second_1m: RawNumber = None
    shares_per_second_5m: RawNumber = None
    shares_per_second_15m: RawNumber = None
    shares_per_second_1h: RawNumber = None

    users: Dict[str, UserRecord] = {}

    @field_validator("users", mode="before")
    @classmethod
    def empty_users(cls, v):
        return {} if v is None else v
