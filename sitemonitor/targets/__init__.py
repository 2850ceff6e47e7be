from sitemonitor.targets.registry import (
    DatabaseTarget,
    MonitorConfig,
    PageTarget,
    RemediationPolicy,
    RemediationRule,
    TargetRegistry,
)

__all__ = [
    "DatabaseTarget",
    "MonitorConfig",
    "PageTarget",
    "RemediationPolicy",
    "RemediationRule",
    "TargetRegistry",
]
