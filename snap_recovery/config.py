"""Application settings."""

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings

from .retry import RetryPolicy


class Settings(BaseSettings):
    host: str = "127.0.0.1"
    port: int = 8787
    debug: bool = False

    backend: str = "memory"
    inventory_file: Optional[Path] = None
    checkpoint_dir: Optional[Path] = None

    batch_size: int = 20
    delay_between_batches: int = 10  # seconds

    resolution_max_attempts: int = 3
    resolution_base_delay: float = 1.0
    resolution_max_delay: float = 30.0

    creation_max_attempts: int = 3
    creation_base_delay: float = 2.0
    creation_max_delay: float = 20.0

    # 30 attempts = ~30 minutes with 1-minute intervals
    vm_poll_max_retries: int = 30
    vm_poll_delay_seconds: int = 60
    vm_poll_max_delay_seconds: int = 600
    vm_poll_multiplier: float = 1.5

    poll_worker_enabled: bool = True
    poll_worker_interval: float = 5.0
    poll_worker_concurrency: int = 10

    model_config = {"env_prefix": "SNAP_RECOVERY_"}

    def resolution_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.resolution_max_attempts,
            base_delay=self.resolution_base_delay,
            multiplier=2.0,
            max_delay=self.resolution_max_delay,
        )

    def creation_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.creation_max_attempts,
            base_delay=self.creation_base_delay,
            multiplier=1.5,
            max_delay=self.creation_max_delay,
        )

    def poll_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.vm_poll_max_retries,
            base_delay=float(self.vm_poll_delay_seconds),
            multiplier=self.vm_poll_multiplier,
            max_delay=float(self.vm_poll_max_delay_seconds),
        )


settings = Settings()
