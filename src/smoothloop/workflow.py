"""
Workflow templating for the Wan 2.2 smooth-loop ComfyUI graph.

Workflows are ComfyUI API-format node graphs: a mapping of node id to
``{"class_type": ..., "inputs": {...}}``. Literal inputs are plain values;
linked inputs are ``[node_id, output_slot]`` lists and are never patched.
"""

import copy
import json
from pathlib import Path
from typing import Any

from smoothloop.config.logging import get_logger
from smoothloop.config.models import GenerationRequest, WorkflowInput
from smoothloop.errors import WorkflowError

logger = get_logger(__name__)

#: Bundled workflow template.
DEFAULT_WORKFLOW: Path = Path(__file__).parent / "workflows" / "wan22_smoothloop.json"

#: Sampler nodes carrying the noise seed.
SEED_NODES: tuple[str, ...] = ("27", "90")

#: Text encoder node holding the prompts.
PROMPT_NODE: str = "16"

#: Input fields carrying the frame count, depending on node type.
FRAME_FIELDS: tuple[str, ...] = ("length", "num_frames")

_cache: dict[Path, dict[str, Any]] = {}


def load_workflow(path: str | Path | None = None) -> dict[str, Any]:
    """
    Load a workflow template from disk.

    Parameters
    ----------
    path : str or Path, optional
        Template location. The bundled template is used when omitted.

    Returns
    -------
    dict
        A private copy of the template that callers may patch freely.

    Raises
    ------
    WorkflowError
        If the file is missing, not JSON, or not a JSON object.
    """
    resolved = Path(path) if path is not None else DEFAULT_WORKFLOW
    resolved = resolved.expanduser().resolve()

    if resolved not in _cache:
        try:
            data = json.loads(resolved.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise WorkflowError(f"Workflow template not found: {resolved}") from e
        except json.JSONDecodeError as e:
            raise WorkflowError(f"Workflow template is not valid JSON: {resolved}: {e}") from e

        if not isinstance(data, dict):
            raise WorkflowError(f"Workflow template must be a JSON object: {resolved}")

        logger.debug(f"Loaded workflow template {resolved} ({len(data)} nodes)")
        _cache[resolved] = data

    return copy.deepcopy(_cache[resolved])


def _node_inputs(workflow: dict[str, Any], node_id: str) -> dict[str, Any] | None:
    node = workflow.get(node_id)
    if not isinstance(node, dict):
        return None
    inputs = node.get("inputs")
    return inputs if isinstance(inputs, dict) else None


def _is_link(value: Any) -> bool:
    return isinstance(value, list)


def apply_seed(
    workflow: dict[str, Any],
    seed: int,
    nodes: tuple[str, ...] = SEED_NODES,
) -> dict[str, Any]:
    """Set ``inputs.seed`` on every listed node present in the workflow."""
    for node_id in nodes:
        inputs = _node_inputs(workflow, node_id)
        if inputs is not None:
            inputs["seed"] = seed
    return workflow


def apply_dimensions(
    workflow: dict[str, Any],
    width: int,
    height: int,
    frames: int,
) -> dict[str, Any]:
    """Patch literal width/height pairs and frame counts across the graph."""
    for node_id in workflow:
        inputs = _node_inputs(workflow, node_id)
        if inputs is None:
            continue

        if "width" in inputs and "height" in inputs:
            if not _is_link(inputs["width"]) and not _is_link(inputs["height"]):
                inputs["width"] = width
                inputs["height"] = height

        for field in FRAME_FIELDS:
            if field in inputs and not _is_link(inputs[field]):
                inputs[field] = frames

    return workflow


def apply_prompts(
    workflow: dict[str, Any],
    prompt: str,
    negative_prompt: str,
    node: str = PROMPT_NODE,
) -> dict[str, Any]:
    """Write prompt text directly into the text encoder node."""
    inputs = _node_inputs(workflow, node)
    if inputs is None:
        raise WorkflowError(f"Prompt node {node!r} not found in workflow")
    inputs["positive_prompt"] = prompt
    inputs["negative_prompt"] = negative_prompt
    return workflow


def prompt_inputs(prompt: str, negative_prompt: str, node: str = PROMPT_NODE) -> list[WorkflowInput]:
    """Build the prompt overrides the job API applies server-side."""
    return [
        WorkflowInput(node=node, field="positive_prompt", value=prompt),
        WorkflowInput(node=node, field="negative_prompt", value=negative_prompt),
    ]


def build_workflow(
    request: GenerationRequest,
    seed: int,
    template: str | Path | None = None,
) -> dict[str, Any]:
    """
    Load a template and patch it for one generation.

    Parameters
    ----------
    request : GenerationRequest
        Prompt, resolution and frame settings.
    seed : int
        Noise seed for this job.
    template : str or Path, optional
        Workflow template path.

    Returns
    -------
    dict
        Patched workflow graph ready for submission.
    """
    workflow = load_workflow(template)
    apply_seed(workflow, seed)
    apply_dimensions(
        workflow,
        request.resolution.width,
        request.resolution.height,
        request.frames,
    )
    apply_prompts(workflow, request.prompt, request.negative_prompt)
    return workflow
