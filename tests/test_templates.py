"""Tests for template lifecycle and analytics."""

from datetime import timedelta

import pytest

from fakes import dt, make_template
from taskcadence.engine import lifecycle, templates
from taskcadence.engine.generator import by_count
from taskcadence.utils.errors import TransitionError

NOW = dt(2024, 1, 1, 7)


def test_template_lifecycle_edges():
    template = make_template()
    assert template.status == "draft"

    templates.activate(template, NOW)
    assert template.status == "active"
    assert template.lifecycle.activated_at == NOW

    templates.pause(template, NOW)
    assert template.status == "paused"
    assert template.lifecycle.paused_at == NOW

    templates.resume(template, NOW)
    assert template.status == "active"
    assert template.lifecycle.paused_at is None

    templates.archive(template, NOW)
    assert template.status == "archived"

    with pytest.raises(TransitionError) as exc_info:
        templates.activate(template, NOW)
    assert exc_info.value.subject == "template"


def test_pause_requires_active():
    template = make_template()

    with pytest.raises(TransitionError):
        templates.pause(template, NOW)
    with pytest.raises(TransitionError):
        templates.resume(template, NOW)


def test_transitions_bump_version():
    template = make_template()
    version = template.version

    templates.activate(template, NOW)

    assert template.version == version + 1
    assert template.lifecycle.updated_at == NOW


def test_analytics_counters():
    template = make_template()
    instances = by_count(template, 4)

    templates.record_generated(template, instances, NOW)
    assert template.analytics.total_instances == 4
    assert template.analytics.last_instance_date == dt(2024, 1, 4, 9)

    first, second = instances[0], instances[1]
    lifecycle.start(first, dt(2024, 1, 1, 9))
    lifecycle.complete(first, dt(2024, 1, 1, 9, 20))
    templates.record_completed(template, first, NOW)

    lifecycle.start(second, dt(2024, 1, 2, 9))
    lifecycle.complete(second, dt(2024, 1, 2, 9, 40))
    templates.record_completed(template, second, NOW)

    assert template.analytics.completed_instances == 2
    assert template.analytics.success_rate == 50.0
    assert template.analytics.average_completion_minutes == 30.0

    templates.record_undone(template, second.actual_duration, NOW)
    assert template.analytics.completed_instances == 1
    assert template.analytics.success_rate == 25.0
    assert template.analytics.average_completion_minutes == 20.0


def test_completion_without_duration_keeps_average():
    template = make_template()
    instance = by_count(template, 1)[0]
    templates.record_generated(template, [instance], NOW)
    lifecycle.complete(instance, dt(2024, 1, 1, 9))

    templates.record_completed(template, instance, NOW + timedelta(hours=1))

    assert template.analytics.average_completion_minutes is None
    assert template.analytics.success_rate == 100.0


def test_average_ignores_untimed_completions():
    """Completions without a duration neither weigh the mean nor skew undo."""
    template = make_template()
    untimed, short, long = by_count(template, 3)
    templates.record_generated(template, [untimed, short, long], NOW)

    lifecycle.complete(untimed, dt(2024, 1, 1, 9))
    templates.record_completed(template, untimed, NOW)
    lifecycle.start(short, dt(2024, 1, 2, 9))
    lifecycle.complete(short, dt(2024, 1, 2, 9, 30))
    templates.record_completed(template, short, NOW)
    lifecycle.start(long, dt(2024, 1, 3, 9))
    lifecycle.complete(long, dt(2024, 1, 3, 10))
    templates.record_completed(template, long, NOW)

    assert template.analytics.average_completion_minutes == 45.0
    assert template.analytics.timed_completions == 2

    templates.record_undone(template, long.actual_duration, NOW)
    assert template.analytics.average_completion_minutes == 30.0

    templates.record_undone(template, short.actual_duration, NOW)
    assert template.analytics.average_completion_minutes is None
    assert template.analytics.timed_completions == 0

    templates.record_undone(template, None, NOW)
    assert template.analytics.completed_instances == 0
    assert template.analytics.average_completion_minutes is None


def test_record_removed_never_drops_below_completed():
    template = make_template()
    template.analytics.total_instances = 3
    template.analytics.completed_instances = 2

    templates.record_removed(template, 5, NOW)

    assert template.analytics.total_instances == 2
