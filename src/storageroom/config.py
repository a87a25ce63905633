"""Runtime settings read from the environment."""

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    cdk_dir: Path
    region: str
    stack_prefix: str
    poll_interval: float
    max_poll_attempts: int

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            data_dir=Path(os.getenv("STORAGEROOM_DATA_DIR", "data")),
            cdk_dir=Path(os.getenv("STORAGEROOM_CDK_DIR", os.path.join("infrastructure", "cdk"))),
            region=os.getenv("AWS_REGION", "us-east-1"),
            stack_prefix=os.getenv("STORAGEROOM_STACK_PREFIX", "SCR-"),
            poll_interval=float(os.getenv("STORAGEROOM_POLL_INTERVAL", "10")),
            max_poll_attempts=int(os.getenv("STORAGEROOM_MAX_POLL_ATTEMPTS", "60")),
        )
