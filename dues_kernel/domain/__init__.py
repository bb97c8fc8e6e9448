"""Pure domain helpers shared across layers."""

from dues_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = ["Clock", "SystemClock", "DeterministicClock"]
