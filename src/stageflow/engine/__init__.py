"""Stage orchestration engine core components.

Key Components:

- PipelineRunner: Executes one run of a stage tree, returns RunOutcome
- EnvironmentContext: Layered environment with scoped push/pop and forks
- credential_scope: Secrets materialized into the environment for a sub-tree
- CommandAdapter: Boundary to external processes (SubprocessCommandAdapter)
- LeafStage/SequentialStage/ParallelStage: The read-only stage tree
- wait_for_gate/GateSignal: Bounded wait for an external quality decision
- HookDispatcher/PostRunHooks: on_success / on_failure / always hooks
- NotificationSink: "send message M" boundary (logging, webhook)
- RunOutcome/StageRecord/FailureCause: Failures as values
- PipelineDefinition/load_pipeline_from_file: YAML definitions

Architecture:
- The stage tree is data; PipelineRunner is behavior
- Actions raise StageFailure subclasses; ActionOrchestrator converts them to FailureCause
- Parallel children run as asyncio tasks on forked environment contexts
- Collaborators are injected, so tests substitute scripted fakes
"""

from .actions import Action, CallableAction, CommandAction, GateAction, NotifyAction
from .command import CommandAdapter, CommandResult, SubprocessCommandAdapter
from .credentials import CredentialBinding, credential_scope, credential_scopes
from .environment import EnvironmentContext, LayerHandle
from .exceptions import (
    CancelledFailure,
    CommandFailure,
    CredentialResolutionFailure,
    GateFailure,
    InvalidPipelineError,
    LayerOrderError,
    StageFailure,
    TimeoutFailure,
)
from .execution_context import RunServices, StageContext
from .executors import ActionExecutor, ExecutorRegistry, StepOutput, create_default_registry
from .gate import (
    CommandGateSignal,
    GateDecision,
    GateOutcome,
    GateSignal,
    HttpGateSignal,
    ManualGateSignal,
    PollingGateSignal,
    wait_for_gate,
)
from .hooks import Hook, HookDispatcher, PostRunHooks
from .load_result import LoadResult, LoadStatus
from .loader import load_pipeline_from_file, load_pipeline_from_yaml
from .notify import (
    DeliveryReceipt,
    LoggingNotificationSink,
    NotificationError,
    NotificationMessage,
    NotificationSink,
    WebhookNotificationSink,
)
from .outcome import (
    FailureCause,
    HookRecord,
    RunOutcome,
    StageRecord,
    StageResult,
    StepRecord,
    StepResult,
)
from .pipeline_runner import PipelineRunner
from .schema import PipelineDefinition, PipelineOptions
from .stage_status import FailureKind, GateResult, StageStatus, TimeoutPolicy
from .stages import LeafStage, ParallelStage, SequentialStage, StageNode, validate_tree

__all__ = [
    # Stage tree
    "Action",
    "CallableAction",
    "CommandAction",
    "GateAction",
    "LeafStage",
    "NotifyAction",
    "ParallelStage",
    "SequentialStage",
    "StageNode",
    "validate_tree",
    # Execution
    "ActionExecutor",
    "ExecutorRegistry",
    "PipelineRunner",
    "RunServices",
    "StageContext",
    "StepOutput",
    "create_default_registry",
    # Environment and credentials
    "CredentialBinding",
    "EnvironmentContext",
    "LayerHandle",
    "credential_scope",
    "credential_scopes",
    # Collaborators
    "CommandAdapter",
    "CommandGateSignal",
    "CommandResult",
    "DeliveryReceipt",
    "GateDecision",
    "GateOutcome",
    "GateSignal",
    "HttpGateSignal",
    "LoggingNotificationSink",
    "ManualGateSignal",
    "NotificationError",
    "NotificationMessage",
    "NotificationSink",
    "PollingGateSignal",
    "SubprocessCommandAdapter",
    "WebhookNotificationSink",
    "wait_for_gate",
    # Hooks
    "Hook",
    "HookDispatcher",
    "PostRunHooks",
    # Results
    "FailureCause",
    "FailureKind",
    "GateResult",
    "HookRecord",
    "RunOutcome",
    "StageRecord",
    "StageResult",
    "StageStatus",
    "StepRecord",
    "StepResult",
    "TimeoutPolicy",
    # Failures
    "CancelledFailure",
    "CommandFailure",
    "CredentialResolutionFailure",
    "GateFailure",
    "InvalidPipelineError",
    "LayerOrderError",
    "StageFailure",
    "TimeoutFailure",
    # Definitions
    "LoadResult",
    "LoadStatus",
    "PipelineDefinition",
    "PipelineOptions",
    "load_pipeline_from_file",
    "load_pipeline_from_yaml",
]
