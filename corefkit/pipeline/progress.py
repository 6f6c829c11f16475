from __future__ import annotations
from typing import Iterable, Literal, Optional, TypeVar, Generator
import sys
from tqdm import tqdm


class ProgressReporter:
    """Reports the progress of an iteration: pipeline steps, resolved
    documents or training epochs.

    Reporters are driven by :func:`progress_`, which calls
    :meth:`start_` once and then :meth:`update_progress_` for each
    element.
    """

    def __init__(self) -> None:
        self.total = 0

    def start_(self, total: int):
        self.total = total

    def update_progress_(self, added_progress: int):
        raise NotImplementedError

    def update_message_(self, message: str):
        pass

    def update_metrics_(self, **metrics: float):
        """Display metrics (for example, training and validation losses)
        alongside progress."""
        pass

    def get_subreporter(self) -> ProgressReporter:
        """A reporter for an iteration nested in the current one"""
        raise NotImplementedError


class NoopProgressReporter(ProgressReporter):
    def update_progress_(self, added_progress: int):
        pass

    def get_subreporter(self) -> ProgressReporter:
        return self


class TQDMProgressReporter(ProgressReporter):
    def __init__(self) -> None:
        super().__init__()
        self.bar: Optional[tqdm] = None

    def start_(self, total: int):
        super().start_(total)
        if not self.bar is None:
            self.bar.close()
        self.bar = tqdm(total=total)

    def update_progress_(self, added_progress: int):
        assert not self.bar is None
        self.bar.update(added_progress)

    def update_message_(self, message: str):
        assert not self.bar is None
        self.bar.set_description_str(message)

    def update_metrics_(self, **metrics: float):
        assert not self.bar is None
        self.bar.set_postfix({name: f"{value:.4f}" for name, value in metrics.items()})

    def get_subreporter(self) -> ProgressReporter:
        return TQDMSubProgressReporter(self)


class TQDMSubProgressReporter(ProgressReporter):
    """Displays a nested iteration in the postfix of its parent bar,
    so that a single bar is ever displayed."""

    def __init__(self, parent: TQDMProgressReporter) -> None:
        super().__init__()
        self.parent = parent
        self.progress = 0

    def start_(self, total: int):
        super().start_(total)
        self.progress = 0

    def _set_postfix_(self, **infos: str):
        assert not self.parent.bar is None
        self.parent.bar.set_postfix(step=f"({self.progress}/{self.total})", **infos)

    def update_progress_(self, added_progress: int):
        self.progress += added_progress
        self._set_postfix_()

    def update_message_(self, message: str):
        self._set_postfix_(message=message)

    def update_metrics_(self, **metrics: float):
        self._set_postfix_(**{name: f"{value:.4f}" for name, value in metrics.items()})

    def get_subreporter(self) -> ProgressReporter:
        return NoopProgressReporter()


T = TypeVar("T")


def progress_(
    progress_reporter: ProgressReporter,
    it: Iterable[T],
    total: Optional[int] = None,
) -> Generator[T, None, None]:
    """Iterate over ``it`` while reporting progress.

    :param total: number of elements of ``it``.  Defaults to
        ``len(it)``.
    """
    progress_reporter.start_(len(it) if total is None else total)  # type: ignore
    for elt in it:
        progress_reporter.update_progress_(1)
        yield elt


def get_progress_reporter(name: Optional[Literal["tqdm"]]) -> ProgressReporter:
    """
    :param name: ``'tqdm'``, or ``None`` to disable progress
        reporting
    """
    if name == "tqdm":
        return TQDMProgressReporter()
    if not name is None:
        print(
            f"[warning] unknown progress reporter '{name}', progress won't be reported",
            file=sys.stderr,
        )
    return NoopProgressReporter()
