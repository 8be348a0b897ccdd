"""Process resource sampling (memory, CPU) via psutil."""

import asyncio

import psutil


class ProcessResources:
    """Samples this process's memory share and CPU utilization."""

    def __init__(self) -> None:
        self._process = psutil.Process()

    def memory_percent(self) -> float:
        """Resident memory as a percentage of physical memory."""
        return float(self._process.memory_percent())

    async def cpu_percent(self, window_seconds: float = 0.1) -> float:
        """CPU utilization over a short sampling window, capped at 100."""
        self._process.cpu_percent(None)
        await asyncio.sleep(window_seconds)
        return min(float(self._process.cpu_percent(None)), 100.0)
