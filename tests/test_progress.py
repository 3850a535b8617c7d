"""Tests for the runtime and progress helpers."""

from reindeer_index.progress import AnalysisTimer, FitProgress, format_duration


def test_format_duration():
    assert format_duration(12.34) == "12.3s"
    assert format_duration(90) == "1.5min"
    assert format_duration(7325) == "2:02:05"


def test_fit_progress_counts_failures(capsys):
    progress = FitProgress(total=5, every=2)
    for reason in ['ok', 'not_converged', 'ok', 'insufficient_data', 'ok']:
        progress.update(failed=reason != 'ok')
    progress.close()

    assert progress.done == 5
    assert progress.failed == 2
    assert "2 failed" in capsys.readouterr().out


def test_disabled_progress_is_silent(capsys):
    progress = FitProgress(total=3, enabled=False)
    for _ in range(3):
        progress.update()
    progress.close()
    assert capsys.readouterr().out == ""


def test_timer_records_steps():
    timer = AnalysisTimer()
    with timer.step("Posterior sample", verbose=False):
        pass
    timing = timer.summary(verbose=False)
    assert [s['step'] for s in timing['steps']] == ["Posterior sample"]
    assert timing['total'] >= 0
