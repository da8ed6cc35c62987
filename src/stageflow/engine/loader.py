"""Pipeline definitions from YAML.

Three checks run in order, and the first one that fails decides the error:
YAML syntax, the ``PipelineDefinition`` schema, then the stage tree itself
(no node reachable twice). Nothing here raises for a bad definition; callers
get a ``LoadResult`` and decide how to report it.
"""

import logging
from pathlib import Path

import yaml

from .exceptions import InvalidPipelineError
from .load_result import LoadResult
from .schema import PipelineDefinition
from .stages import validate_tree

logger = logging.getLogger(__name__)


def load_pipeline_from_file(file_path: str | Path) -> LoadResult[PipelineDefinition]:
    """Read ``file_path`` and hand its text to ``load_pipeline_from_yaml``.

    The file path becomes the ``source`` used in error messages and metadata.
    """
    path = Path(file_path)
    if not path.exists():
        return LoadResult.failure(f"Pipeline file not found: {file_path}")
    if not path.is_file():
        return LoadResult.failure(f"Path is not a file: {file_path}")

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        return LoadResult.failure(f"Failed to read file '{file_path}': {e}")
    return load_pipeline_from_yaml(text, source=str(file_path))


def load_pipeline_from_yaml(
    yaml_content: str, source: str = "<string>"
) -> LoadResult[PipelineDefinition]:
    try:
        document = yaml.safe_load(yaml_content)
    except yaml.YAMLError as e:
        return LoadResult.failure(f"Invalid YAML syntax in {source}: {e}")

    if not isinstance(document, dict):
        kind = type(document).__name__
        return LoadResult.failure(f"Pipeline {source} must be a YAML dictionary, got {kind}")

    validated = PipelineDefinition.validate_yaml_dict(document)
    if validated.is_failure or validated.value is None:
        return LoadResult.failure(f"Invalid pipeline in {source}:\n{validated.error}")
    pipeline = validated.value

    try:
        validate_tree(pipeline.root_stage)
    except InvalidPipelineError as e:
        return LoadResult.failure(f"Invalid pipeline in {source}: {e}")

    logger.debug(f"Loaded pipeline '{pipeline.name}' ({source})")
    return LoadResult.success(pipeline, metadata={"source": source})


__all__ = ["load_pipeline_from_file", "load_pipeline_from_yaml"]
