"""
Amber MD workflow: input generation, stage descriptors and the sequencer.
"""
from .inputs import production_steps, write_control_files, write_leap_script
from .stages import CHAIN, ENGINE_STAGES
from .workflow import MDWorkflow, SequencerState, WorkflowResult, prepare_environment

__all__ = [
    "CHAIN",
    "ENGINE_STAGES",
    "MDWorkflow",
    "SequencerState",
    "WorkflowResult",
    "prepare_environment",
    "production_steps",
    "write_control_files",
    "write_leap_script",
]
