"""
Utilities for the election trust core: logging setup, operation timing,
and results persistence for the demo driver.
"""

import json
import logging
import platform
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import psutil

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'


@dataclass
class PerformanceMetrics:
    operation: str
    duration_seconds: float
    memory_mb: float
    timestamp: float
    failed: bool = False
    additional_data: Dict[str, Any] = field(default_factory=dict)


def setup_logging(log_level: str = "INFO", log_file: Optional[Path] = None,
                  log_dir: Path = Path("logs")) -> logging.Logger:
    """Send logs to a timestamped file and to stderr"""
    if log_file is None:
        log_file = Path(log_dir) / f"election_core_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    # Clear existing handlers to avoid duplicates
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized. Log file: {log_file}")
    return logger


class PerformanceMonitor:
    """Collects per-operation timings and resident memory"""

    def __init__(self):
        self.metrics: List[PerformanceMetrics] = []
        self.process = psutil.Process()

    def start_operation(self, operation_name: str) -> 'OperationContext':
        return OperationContext(self, operation_name)

    def record_metric(self, metric: PerformanceMetrics):
        self.metrics.append(metric)

    def memory_mb(self) -> float:
        return self.process.memory_info().rss / 1024 / 1024

    def get_summary(self) -> Dict[str, Any]:
        """Per-operation statistics"""
        if not self.metrics:
            return {
                'total_operations': 0,
                'total_duration': 0.0,
                'operations': {}
            }

        operation_groups: Dict[str, List[PerformanceMetrics]] = {}
        for metric in self.metrics:
            operation_groups.setdefault(metric.operation, []).append(metric)

        summary = {
            'total_operations': len(self.metrics),
            'operations': {}
        }

        for op_name, metrics in operation_groups.items():
            durations = np.array([m.duration_seconds for m in metrics])
            memory = np.array([m.memory_mb for m in metrics])
            total = float(durations.sum())

            summary['operations'][op_name] = {
                'count': len(metrics),
                'failures': sum(1 for m in metrics if m.failed),
                'total_duration': total,
                'avg_duration': float(np.mean(durations)),
                'min_duration': float(durations.min()),
                'max_duration': float(durations.max()),
                'p95_duration': float(np.percentile(durations, 95)),
                'std_duration': float(np.std(durations)) if len(durations) > 1 else 0.0,
                'peak_memory_mb': float(memory.max()),
                'throughput_ops_per_sec': len(metrics) / total if total > 0 else 0.0
            }

        summary['total_duration'] = sum(
            op_data['total_duration']
            for op_data in summary['operations'].values()
        )
        return summary

    def save_metrics(self, filepath: Path):
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        metrics_data = {
            'metrics': [asdict(m) for m in self.metrics],
            'summary': self.get_summary(),
            'system_info': get_system_info(),
            'timestamp': datetime.now().isoformat()
        }

        with open(filepath, 'w') as f:
            json.dump(metrics_data, f, indent=2, default=str)

    def reset(self):
        self.metrics.clear()


class OperationContext:
    """Context manager timing one operation"""

    def __init__(self, monitor: PerformanceMonitor, operation_name: str):
        self.monitor = monitor
        self.operation_name = operation_name
        self.start_time = 0.0
        self.start_memory = 0.0
        self.additional_data: Dict[str, Any] = {}

    def __enter__(self):
        self.start_memory = self.monitor.memory_mb()
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.perf_counter() - self.start_time
        metric = PerformanceMetrics(
            operation=self.operation_name,
            duration_seconds=duration,
            memory_mb=max(self.start_memory, self.monitor.memory_mb()),
            timestamp=time.time(),
            failed=exc_type is not None,
            additional_data=self.additional_data,
        )
        self.monitor.record_metric(metric)


_GB = 1024 ** 3

# Result sections rendered as "key: value" lines, in display order
_RESULT_SECTIONS = (
    ('election', "ELECTION"),
    ('outcomes', "CAST OUTCOMES"),
)


def get_system_info() -> Dict[str, Any]:
    memory = psutil.virtual_memory()
    return {
        'platform': platform.platform(),
        'python_version': platform.python_version(),
        'machine': platform.machine(),
        'cpu_count_logical': psutil.cpu_count(logical=True),
        'cpu_count_physical': psutil.cpu_count(logical=False),
        'total_memory_gb': round(memory.total / _GB, 2),
        'available_memory_gb': round(memory.available / _GB, 2),
        'collected_at': datetime.now().isoformat()
    }


def _to_serializable(obj: Any) -> Any:
    if hasattr(obj, '__dataclass_fields__'):
        return _to_serializable(asdict(obj))
    if isinstance(obj, dict):
        return {str(k): _to_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [_to_serializable(item) for item in obj]
    if isinstance(obj, (np.integer, np.floating)):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, bytes):
        return obj.hex()
    if isinstance(obj, Path):
        return str(obj)
    if hasattr(obj, 'value') and hasattr(obj, 'name'):
        # Enum members
        return obj.value
    return obj


def save_results(results: Dict[str, Any], filepath: Path):
    """Write results as JSON plus a plain-text summary next to it"""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    document = {
        'metadata': {
            'generated_at': datetime.now().isoformat(),
            'system_info': get_system_info(),
        },
        'data': _to_serializable(results)
    }
    filepath.write_text(json.dumps(document, indent=2, default=str))

    summary_path = filepath.with_name(f"{filepath.stem}_summary.txt")
    summary_path.write_text(create_results_summary(results))

    logging.getLogger(__name__).info(f"Results written to {filepath} and {summary_path.name}")


def _banner(title: str) -> List[str]:
    return ["=" * 80, title, "=" * 80,
            f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"]


def _tally_lines(tally: Dict[str, int]) -> List[str]:
    cast = sum(tally.values())
    lines = ["ELECTION TALLY:"]
    for candidate, count in tally.items():
        share = count / cast * 100 if cast else 0.0
        lines.append(f"  {candidate}: {count} votes ({share:.1f}%)")
    lines.append(f"  Total Votes: {cast}")
    return lines


def create_results_summary(results: Dict[str, Any]) -> str:
    lines = _banner("ELECTION TRUST CORE - RESULTS SUMMARY")

    blocks = []
    for key, title in _RESULT_SECTIONS:
        if key in results:
            blocks.append([f"{title}:"] + [f"  {k}: {v}" for k, v in results[key].items()])
    if 'tally' in results:
        blocks.append(_tally_lines(results['tally']))
    if 'integrity_checks' in results:
        blocks.append(["INTEGRITY CHECKS:"] + [
            f"  {name}: {'PASSED' if ok else 'FAILED'}"
            for name, ok in results['integrity_checks'].items()
        ])

    for block in blocks:
        lines.append("")
        lines.extend(block)
    lines.extend(["", "=" * 80])
    return "\n".join(lines)


def create_performance_report(monitor: PerformanceMonitor) -> str:
    summary = monitor.get_summary()

    lines = _banner("ELECTION TRUST CORE - PERFORMANCE REPORT")
    lines.append(f"Total Operations: {summary.get('total_operations', 0)}")
    lines.append(f"Total Duration: {format_duration(summary.get('total_duration', 0.0))}")
    lines.append("")

    if not summary['operations']:
        lines.append("No performance data available.")
    else:
        lines.extend(["OPERATION BREAKDOWN:", "-" * 60])
        for name, stats in summary['operations'].items():
            lines.extend([
                "",
                f"{name.upper()}:",
                f"  Executions: {stats['count']} ({stats['failures']} failed)",
                f"  Average Time: {format_duration(stats['avg_duration'])}",
                f"  p95 Time: {format_duration(stats['p95_duration'])}",
                f"  Min/Max Time: {format_duration(stats['min_duration'])} / "
                f"{format_duration(stats['max_duration'])}",
                f"  Throughput: {stats['throughput_ops_per_sec']:.2f} ops/sec",
                f"  Peak Memory: {stats['peak_memory_mb']:.1f} MB",
            ])

    lines.extend(["", "=" * 80])
    return "\n".join(lines)


def format_duration(seconds: float) -> str:
    if seconds < 1:
        return f"{seconds * 1000:.2f}ms"
    if seconds < 60:
        return f"{seconds:.2f}s"
    whole_minutes, rest = divmod(seconds, 60)
    return f"{int(whole_minutes)}m {rest:.1f}s"
