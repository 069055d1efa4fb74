from charging.scheduler.metrics import ProcessStats, SchedulerStats


def test_process_stats_records_success_and_failure():
    stats = ProcessStats()

    stats.record_success(execution_time=2.0)
    stats.record_failure("boom", execution_time=4.0)
    stats.record_skip()

    assert stats.runs == 2
    assert stats.failures == 1
    assert stats.skipped == 1
    assert stats.avg_execution_time == 3.0
    assert stats.last_error == "boom"


def test_process_stats_ignores_invalid_execution_times():
    stats = ProcessStats()

    stats.record_success(execution_time=-1)
    stats.record_success(execution_time="fast")

    assert stats.total_execution_time == 0.0


def test_scheduler_stats_latency_window_is_bounded():
    stats = SchedulerStats()

    for index in range(150):
        stats.record_run("cleanup", float(index))

    assert len(stats.latencies) == 100
    assert stats.avg_latency == sum(range(50, 150)) / 100
    assert stats.total_runs == 150


def test_scheduler_stats_report_lists_processes():
    stats = SchedulerStats()
    stats.record_run("cleanup", 0.5)
    stats.record_run("analytics", 0.1, error="db down")
    stats.record_skip("analytics")
    stats.tasks_dropped = 1

    report = stats.format_report()

    assert "❌ Failed Runs: 1" in report
    assert "analytics: 1 runs, 1 failed, 1 skipped" in report
    assert "0 executed, 0 retried, 1 dropped" in report
