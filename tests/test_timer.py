from tcpreactor.timer import Timer, TimerId


def test_sequences_increase_by_one():
    first = Timer(lambda: None, 1.0, 0.0)
    second = Timer(lambda: None, 1.0, 0.0)
    assert second.sequence() == first.sequence() + 1


def test_num_created_tracks_latest_sequence():
    timer = Timer(lambda: None, 1.0, 0.0)
    assert Timer.num_created() == timer.sequence()


def test_repeat_only_for_positive_interval():
    assert Timer(lambda: None, 1.0, 2.0).repeat() is True
    assert Timer(lambda: None, 1.0, 0.0).repeat() is False
    assert Timer(lambda: None, 1.0, -1.0).repeat() is False


def test_expiration_is_initial_time():
    assert Timer(lambda: None, 42.5, 0.0).expiration() == 42.5


def test_restart_repeating_timer():
    timer = Timer(lambda: None, 10.0, 2.5)
    timer.restart(100.0)
    assert timer.expiration() == 100.0 + 2.5


def test_restart_one_shot_timer_invalidates():
    timer = Timer(lambda: None, 10.0, 0.0)
    timer.restart(100.0)
    assert timer.expiration() is None


def test_run_calls_callback():
    calls = []
    timer = Timer(lambda: calls.append("fired"), 0.0, 0.0)
    timer.run()
    timer.run()
    assert calls == ["fired", "fired"]


def test_timer_id_equality():
    timer = Timer(lambda: None, 0.0, 0.0)
    assert TimerId(timer, timer.sequence()) == TimerId(timer, timer.sequence())
    assert TimerId(timer, timer.sequence()) != TimerId(timer, timer.sequence() + 1)
    assert len({TimerId(timer, timer.sequence()), TimerId(timer, timer.sequence())}) == 1


def test_default_timer_id():
    timer_id = TimerId()
    assert timer_id.timer is None
    assert timer_id.sequence == 0