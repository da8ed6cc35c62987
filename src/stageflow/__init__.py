"""stageflow: declarative stage-orchestration engine."""

__version__ = "0.1.0"
