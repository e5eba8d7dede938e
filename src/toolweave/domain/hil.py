"""
Human-in-the-loop layer checkpoints: when to ask and what to show.

The summary is template-based plain text; approvers render it as they see fit.
"""

from enum import Enum

from toolweave.domain.models import TaskStatus, WorkflowState, WorkflowTask

NEXT_LAYER_PREVIEW_LIMIT = 5
RECENT_RESULTS_LIMIT = 3


class ApprovalMode(str, Enum):
    ALWAYS = "always"
    NEVER = "never"
    CRITICAL_ONLY = "critical_only"  # Only layers containing side-effecting tasks


def should_require_approval(
    enabled: bool, mode: ApprovalMode, layer: tuple[WorkflowTask, ...]
) -> bool:
    if not enabled:
        return False
    if mode is ApprovalMode.ALWAYS:
        return True
    if mode is ApprovalMode.CRITICAL_ONLY:
        return any(task.side_effects for task in layer)
    return False


def build_checkpoint_summary(
    state: WorkflowState,
    layer_index: int,
    layers: tuple[tuple[WorkflowTask, ...], ...],
) -> str:
    """Render the approval summary shown after ``layer_index`` completes."""
    results = state.ordered_results()
    completed = sum(1 for r in results if r.status is TaskStatus.SUCCESS)
    failed = sum(1 for r in results if r.status is TaskStatus.ERROR)
    layer = layers[layer_index]
    next_layer = layers[layer_index + 1] if layer_index + 1 < len(layers) else None

    lines = [
        "=== Workflow Approval Checkpoint ===\n",
        f"Layer {layer_index} completed\n",
        "\n## Execution Summary",
        f"Tasks executed in this layer: {len(layer)}",
        f"Total tasks completed: {completed}",
        f"Total tasks failed: {failed}",
        "Current workflow status: "
        + ("All tasks successful" if failed == 0 else "Some tasks have errors"),
        "\n## Recent Task Results",
    ]
    for result in results[-RECENT_RESULTS_LIMIT:]:
        timing = (
            f" ({result.execution_time_ms:.0f}ms)" if result.execution_time_ms else ""
        )
        lines.append(f"  - {result.task_id}: {result.status.value}{timing}")

    lines.append(f"\n## Layer {layer_index} Task Details")
    for task in layer:
        lines.append(
            f"  - Task ID: {task.id}\n"
            f"    Tool: {task.tool}\n"
            f"    Dependencies: {len(task.depends_on)}\n"
            f"    Status: {state.status_of(task.id).value}"
        )

    if next_layer is not None:
        lines.append("\n## Next Layer Preview")
        lines.append(f"The next layer contains {len(next_layer)} task(s):")
        for task in next_layer[:NEXT_LAYER_PREVIEW_LIMIT]:
            deps = ", ".join(sorted(task.depends_on)) or "none"
            lines.append(
                f"  - Task ID: {task.id}\n    Tool: {task.tool}\n    Dependencies: {deps}"
            )
        if len(next_layer) > NEXT_LAYER_PREVIEW_LIMIT:
            lines.append(
                f"  ... and {len(next_layer) - NEXT_LAYER_PREVIEW_LIMIT} more tasks"
            )
        lines.extend(
            [
                "\n## Approval Request",
                f"The workflow is ready to proceed to layer {layer_index + 1}.",
                "Please review the completed tasks and upcoming work before approving.",
                "\nApprove to continue execution? [Y/N]",
            ]
        )
    else:
        lines.extend(
            [
                "\n## Final Layer Reached",
                "This was the final layer of the workflow.",
                "All planned tasks have been executed.",
                "\nApprove to complete the workflow? [Y/N]",
            ]
        )
    return "\n".join(lines)
