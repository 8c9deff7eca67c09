"""Common contract of the conversion pipeline stages."""

import logging
from abc import ABC, abstractmethod

from .context import ConverterContext

log = logging.getLogger(__name__)

# A stage still unfinished after this many step() calls is force-finished
MAX_STAGE_ITERATIONS = 100


class ConverterStage(ABC):
    """One step-able unit of conversion work.

    step() does one slice of work and returns True while more work remains.
    Every stage sets `finished` itself once done; a stage whose document or
    prerequisite is missing finishes on its first step without output.
    """

    def __init__(self, ctx: ConverterContext):
        self.ctx = ctx
        self.finished = False
        self.iterations = 0

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def step(self) -> bool:
        ...

    def skip(self) -> bool:
        """Finish without doing anything."""
        log.debug("%s: nothing to do", self.name)
        self.finished = True
        return False

    def run_until_finished(self, max_iterations: int = MAX_STAGE_ITERATIONS) -> None:
        while not self.finished:
            if self.iterations >= max_iterations:
                self.force_finish(max_iterations)
                return
            self.iterations += 1
            self.step()

    def force_finish(self, max_iterations: int = MAX_STAGE_ITERATIONS) -> None:
        self.ctx.warn(
            f"Stage {self.name} did not finish within {max_iterations} "
            f"iterations and was stopped"
        )
        self.finished = True
