"""Per-repository workflow stages.

Stages run in a fixed order, each as a separate invocation:

    init -> clone -> plan -> push -> merge
                                  -> status

Init is not a RepoStage: it produces the repository set itself and is
implemented by :meth:`StagePipeline.initialize`.
"""

from repo_fanout.engine.stages.base import RepoStage
from repo_fanout.engine.stages.clone import CloneStage
from repo_fanout.engine.stages.merge import MergeStage
from repo_fanout.engine.stages.plan import PlanStage
from repo_fanout.engine.stages.push import PushStage
from repo_fanout.engine.stages.status import StatusStage

__all__ = [
    "CloneStage",
    "MergeStage",
    "PlanStage",
    "PushStage",
    "RepoStage",
    "StatusStage",
]
