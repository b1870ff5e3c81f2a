"""Bounded remediation loops.

Key Components:
- IterationController: One analyze -> fix -> verify loop per
  (workflow, node, error type), with attempt budget and deadline

Usage:
    from remediator.iteration import IterationController

    controller = IterationController(analyzer, fixer, engine, knowledge, emitter)
    controller.start(record)
"""

from .controller import IterationController

__all__ = ["IterationController"]
