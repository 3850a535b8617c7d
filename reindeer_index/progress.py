"""
Runtime tracking and progress utilities.

Plain-text stage timing and a progress line for the (area x draw) fitting
grid, which can run for hours at full sample size.
"""

import time
from contextlib import contextmanager
from datetime import timedelta


def format_duration(seconds):
    """Format seconds as human-readable string."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        return f"{seconds/60:.1f}min"
    return str(timedelta(seconds=int(seconds)))


class AnalysisTimer:
    """
    Wall-clock time per pipeline stage.

    Usage:
        timer = AnalysisTimer()
        with timer.step("Carrying capacity"):
            ...
        timing = timer.summary()
    """

    def __init__(self):
        self.steps = []
        self.started = time.time()

    @contextmanager
    def step(self, name, verbose=True):
        start = time.time()
        try:
            yield
        finally:
            elapsed = time.time() - start
            self.steps.append({'step': name, 'duration': elapsed})
            if verbose:
                print(f"  [DONE] {name} completed in {format_duration(elapsed)}")

    def summary(self, verbose=True):
        """Durations of the recorded steps; printed as a table if verbose."""
        total = sum(s['duration'] for s in self.steps)
        overall = time.time() - self.started

        if verbose and self.steps:
            print("\n" + "=" * 60)
            print("RUNTIME SUMMARY")
            print("=" * 60)
            for s in self.steps:
                pct = 100 * s['duration'] / total if total > 0 else 0
                print(f"{s['step']:<40} {format_duration(s['duration']):>10} ({pct:>4.1f}%)")
            print("-" * 60)
            print(f"{'Overall runtime':<40} {format_duration(overall):>10}")
            print("=" * 60)

        return {'steps': list(self.steps), 'total': total, 'overall': overall}


class FitProgress:
    """
    Progress line for a grid of independent fits, with a running failure count.

    Usage:
        progress = FitProgress(total=18000, desc="Fitting")
        for d, j, K, reason in results:
            progress.update(failed=reason != 'ok')
        progress.close()
    """

    def __init__(self, total, desc="Fitting", every=100, width=30, enabled=True):
        self.total = total
        self.desc = desc
        self.every = every
        self.width = width
        self.enabled = enabled
        self.done = 0
        self.failed = 0
        self.start_time = time.time()

    def update(self, failed=False):
        self.done += 1
        self.failed += int(failed)
        # redraw every `every` units and on the last one
        if self.enabled and (self.done == self.total or self.done % self.every == 0):
            self._display()

    def _display(self):
        if self.total == 0:
            return

        frac = self.done / self.total
        filled = int(self.width * frac)
        bar = "#" * filled + "." * (self.width - filled)

        elapsed = time.time() - self.start_time
        remaining = elapsed / self.done * (self.total - self.done)
        print(f"\r  {self.desc}: [{bar}] {self.done:,}/{self.total:,} "
              f"failed {self.failed:,}  ETA {format_duration(remaining)}",
              end="", flush=True)

    def close(self):
        if not self.enabled:
            return
        elapsed = time.time() - self.start_time
        print(f"\r  {self.desc}: {self.done:,} fits in {format_duration(elapsed)}, "
              f"{self.failed:,} failed" + " " * 20)


def print_step_header(step_num, total_steps, title):
    """Print a formatted step header."""
    print(f"\n[Step {step_num}/{total_steps}] {title}")
    print("-" * 60)
