"""Session performance monitoring."""

from .performance import PerformanceMonitor, PerformanceReport, SessionMetrics

__all__ = ["PerformanceMonitor", "PerformanceReport", "SessionMetrics"]
