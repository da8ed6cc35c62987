"""
Pipeline definition schema for YAML files.

A definition is a named list of top-level stages (run sequentially), a
base environment, run options and post-run hooks:

    name: web-app
    environment:
      REGISTRY: registry.example.com
    options:
      timeout: 3600
      fail_fast: false
    stages:
      - name: Build
        parallel:
          - name: Frontend
            steps:
              - run: npm ci && npm run build
                working_dir: frontend
          - name: Backend
            steps:
              - run: mvn -B package
                working_dir: backend
      - name: Quality Gate
        steps:
          - gate: web-app
            max_duration: 300
            on_timeout: fail
    post:
      always:
        - run: docker logout
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from .actions import EnvValue
from .hooks import PostRunHooks
from .load_result import LoadResult
from .stages import SequentialStage, StageNode, normalize_nodes


class PipelineOptions(BaseModel):
    """Run-wide options of one pipeline."""

    model_config = {"extra": "forbid"}

    timeout: float | None = Field(
        default=None, gt=0, description="Whole-run timeout in seconds; exceeded -> ABORTED"
    )
    fail_fast: bool | None = Field(
        default=None,
        description="Default for parallel groups that do not declare fail_fast "
        "(None -> STAGEFLOW_FAIL_FAST, itself false by default)",
    )


class PipelineDefinition(BaseModel):
    """Complete pipeline definition loaded from YAML."""

    model_config = {"extra": "forbid"}

    name: str = Field(description="Pipeline name", min_length=1, max_length=200)
    description: str = Field(default="", description="Human-readable description")
    environment: dict[str, EnvValue] = Field(
        default_factory=dict, description="Base environment of the run"
    )
    options: PipelineOptions = Field(default_factory=PipelineOptions)
    stages: list[StageNode] = Field(description="Top-level stages, run in order")
    post: PostRunHooks | None = Field(default=None, description="Post-run hooks")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if "/" in v:
            raise ValueError(f"Pipeline name must not contain '/': '{v}'")
        return v

    @field_validator("environment")
    @classmethod
    def validate_environment_keys(cls, v: dict[str, EnvValue]) -> dict[str, EnvValue]:
        for key in v:
            if not re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", key):
                raise ValueError(f"Invalid environment variable name: '{key}'")
        return v

    @field_validator("stages", mode="before")
    @classmethod
    def normalize_stages(cls, v: Any) -> Any:  # noqa: ANN401
        return normalize_nodes(v)

    @property
    def root_stage(self) -> SequentialStage:
        """The top-level stages wrapped in one sequential group named after the pipeline."""
        return SequentialStage(name=self.name, children=self.stages)

    @staticmethod
    def validate_yaml_dict(data: dict[str, Any]) -> LoadResult[PipelineDefinition]:
        """
        Validate a dictionary loaded from YAML.

        Returns:
            LoadResult.success(PipelineDefinition) if valid
            LoadResult.failure(error_message) with the pydantic error report
        """
        try:
            return LoadResult.success(PipelineDefinition(**data))
        except ValidationError as e:
            return LoadResult.failure(f"Pipeline validation failed:\n{e}")
        except ValueError as e:
            return LoadResult.failure(f"Pipeline validation failed: {e}")


__all__ = ["PipelineDefinition", "PipelineOptions"]
