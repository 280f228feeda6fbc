"""Flow 層。ストア I/O と純粋な選択ロジックを束ねる。"""

from .practice import PracticeService

__all__ = ["PracticeService"]
