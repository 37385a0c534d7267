"""Configuration schema using Pydantic."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings


class Base(BaseModel):
    """Base model that accepts both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MulticastConfig(Base):
    """Multicast group session configuration."""

    group: str = "239.0.0.0:11332"   # Group address; port defaults to 11332 when omitted
    source_address: str = ""         # Local address to send from (auto-detected if empty)
    bind_address: str = "0.0.0.0"    # Address the receive socket binds to
    read_timeout: float = Field(default=1.0, gt=0)  # Seconds per receive deadline / close check
    read_buffer: int = Field(default=8192, gt=0)     # Max datagram size read
    event_buffer: int = Field(default=64, ge=0)      # Event queue size (0 = unbounded)
    probe_host: str = "8.8.8.8:80"   # External address used to find the primary interface


class RangerConfig(Base):
    """Subnet scan configuration."""

    port: int = Field(default=11332, ge=1, le=65535)  # Port probed on every candidate
    probe_timeout: float = Field(default=0.1, gt=0)   # Write and read deadline per probe
    transport: Literal["udp", "tcp"] = "udp"
    event_buffer: int = Field(default=64, ge=0)


class DespConfig(BaseSettings):
    """Root configuration for desperados."""

    multicast: MulticastConfig = Field(default_factory=MulticastConfig)
    ranger: RangerConfig = Field(default_factory=RangerConfig)

    model_config = ConfigDict(env_prefix="DESP_", env_nested_delimiter="__")
