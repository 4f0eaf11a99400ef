"""Services for the placement kernel (write side)."""

from placement_kernel.services.lifecycle_recorder import LifecycleRecorder
from placement_kernel.services.policy_store import PolicyStore

__all__ = [
    "LifecycleRecorder",
    "PolicyStore",
]
