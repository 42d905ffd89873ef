"""Write path: batched delete-then-insert upserts."""

from .batch import BatchWriter, PendingWrite, WriterMetrics, WriterState
from .literals import render_literal

__all__ = ["BatchWriter", "PendingWrite", "WriterMetrics", "WriterState", "render_literal"]
