"""
Pipeline module for the RECALL -> APPLY -> DECIDE -> LEARN memory pipeline.
"""

from invoice_memory.pipeline.apply import MemoryApply, POMatch
from invoice_memory.pipeline.decide import Decision, DecisionEngine, Outcome
from invoice_memory.pipeline.learn import LEARNING_RULES, LearningRule, MemoryLearner
from invoice_memory.pipeline.processor import LearnOutcome, MemoryPipeline, MemorySnapshot
from invoice_memory.pipeline.recall import MemoryRecall


__all__ = [
    # Stages
    "MemoryRecall",
    "MemoryApply",
    "DecisionEngine",
    "MemoryLearner",
    # Facade
    "MemoryPipeline",
    "LearnOutcome",
    "MemorySnapshot",
    # Results and rules
    "Decision",
    "Outcome",
    "POMatch",
    "LearningRule",
    "LEARNING_RULES",
]
