from datetime import date, time

import pytest

from careslot.core.errors import ValidationError
from careslot.models.availability import AvailabilitySlot
from careslot.models.schedule_template import ScheduleTemplate
from careslot.repositories.sql import SqlAvailabilityStore, SqlScheduleTemplateStore
from careslot.services.slot_generator import (
    SlotGenerator,
    day_of_week,
    expand_template_day,
    generate_for_providers,
)

MONDAY = date(2024, 1, 22)


def make_template(**overrides) -> ScheduleTemplate:
    values = {
        'provider_id': 'dr-lee',
        'day_of_week': 1,
        'start_time': time(9, 0),
        'end_time': time(12, 0),
        'slot_duration_minutes': 30,
        'buffer_minutes': 10,
        'is_active': True,
    }
    values.update(overrides)
    return ScheduleTemplate(**values)


def as_ranges(candidates) -> list[tuple[time, time]]:
    return [(candidate.start_time, candidate.end_time) for candidate in candidates]


def test_day_of_week_counts_from_sunday() -> None:
    assert day_of_week(date(2024, 1, 21)) == 0
    assert day_of_week(MONDAY) == 1
    assert day_of_week(date(2024, 1, 27)) == 6


def test_expand_template_day_rejects_slot_that_overruns_end_time() -> None:
    candidates = expand_template_day(make_template(), MONDAY)

    assert as_ranges(candidates) == [
        (time(9, 0), time(9, 30)),
        (time(9, 40), time(10, 10)),
        (time(10, 20), time(10, 50)),
        (time(11, 0), time(11, 30)),
    ]
    assert all(candidate.date == MONDAY for candidate in candidates)


def test_expand_template_day_without_buffer_fills_exactly_to_end() -> None:
    candidates = expand_template_day(make_template(buffer_minutes=0, end_time=time(10, 30)), MONDAY)

    assert as_ranges(candidates) == [
        (time(9, 0), time(9, 30)),
        (time(9, 30), time(10, 0)),
        (time(10, 0), time(10, 30)),
    ]


def test_expand_template_day_skips_break_window_and_resumes_at_break_end() -> None:
    template = make_template(
        start_time=time(9, 0),
        end_time=time(14, 0),
        slot_duration_minutes=60,
        buffer_minutes=0,
        break_start_time=time(12, 0),
        break_end_time=time(12, 30),
    )

    candidates = expand_template_day(template, MONDAY)

    assert as_ranges(candidates) == [
        (time(9, 0), time(10, 0)),
        (time(10, 0), time(11, 0)),
        (time(11, 0), time(12, 0)),
        (time(12, 30), time(13, 30)),
    ]


@pytest.mark.parametrize(
    ('overrides', 'message'),
    [
        ({'slot_duration_minutes': 0}, 'Slot duration must be greater than zero minutes.'),
        ({'end_time': time(9, 0)}, 'Template end time must be after its start time.'),
        ({'buffer_minutes': -5}, 'Buffer between slots cannot be negative.'),
        ({'break_start_time': time(10, 0)}, 'Break start and end must be set together.'),
        (
            {'break_start_time': time(8, 0), 'break_end_time': time(9, 30)},
            'Break window must fall within the template hours.',
        ),
    ],
)
def test_expand_template_day_rejects_invalid_templates(overrides: dict, message: str) -> None:
    with pytest.raises(ValidationError) as exception_info:
        expand_template_day(make_template(**overrides), MONDAY)

    assert str(exception_info.value) == message


def test_generate_skips_days_without_template_and_isolates_invalid_day(db) -> None:
    generator = SlotGenerator(SqlScheduleTemplateStore(db), SqlAvailabilityStore(db))
    templates = {
        1: make_template(slot_duration_minutes=0),
        2: make_template(day_of_week=2),
    }

    result = generator.generate('dr-lee', date(2024, 1, 21), date(2024, 1, 24), templates)

    assert {candidate.date for candidate in result.candidates} == {date(2024, 1, 23)}
    assert len(result.candidates) == 4
    assert len(result.errors) == 1
    assert result.errors[0].date == MONDAY
    assert result.errors[0].day_of_week == 1


def test_generate_rejects_inverted_or_oversized_ranges(db) -> None:
    generator = SlotGenerator(SqlScheduleTemplateStore(db), SqlAvailabilityStore(db), horizon_days=7)

    with pytest.raises(ValidationError):
        generator.generate('dr-lee', date(2024, 1, 24), date(2024, 1, 22), {})

    with pytest.raises(ValidationError):
        generator.generate('dr-lee', date(2024, 1, 1), date(2024, 1, 8), {})


def test_generate_and_persist_is_idempotent_over_overlapping_ranges(db) -> None:
    template_store = SqlScheduleTemplateStore(db)
    template_store.save(make_template())
    template_store.save(make_template(day_of_week=2))
    generator = SlotGenerator(template_store, SqlAvailabilityStore(db))

    first = generator.generate_and_persist('dr-lee', date(2024, 1, 22), date(2024, 1, 22))
    second = generator.generate_and_persist('dr-lee', date(2024, 1, 22), date(2024, 1, 23))

    assert first.created == 4
    assert second.created == 4
    assert second.skipped_duplicates == 4
    assert db.query(AvailabilitySlot).count() == 8


def test_generate_and_persist_never_creates_overlaps_after_template_change(db) -> None:
    template_store = SqlScheduleTemplateStore(db)
    availability_store = SqlAvailabilityStore(db)
    generator = SlotGenerator(template_store, availability_store)

    template_store.save(make_template())
    generator.generate_and_persist('dr-lee', MONDAY, MONDAY)

    template_store.save(make_template(start_time=time(9, 15), buffer_minutes=0))
    result = generator.generate_and_persist('dr-lee', MONDAY, MONDAY)

    slots = availability_store.query('dr-lee', MONDAY, MONDAY)
    for current, following in zip(slots, slots[1:]):
        assert current.end_time <= following.start_time
    assert result.skipped_overlaps > 0
    assert len(template_store.list_active('dr-lee')) == 1


def test_saving_active_template_deactivates_previous_one_for_same_day(db) -> None:
    template_store = SqlScheduleTemplateStore(db)
    first = template_store.save(make_template())
    second = template_store.save(make_template(start_time=time(13, 0), end_time=time(17, 0)))

    db.refresh(first)
    assert first.is_active is False
    assert template_store.list_active('dr-lee') == {1: second}


def test_generate_for_providers_runs_each_provider_in_its_own_session(file_session_factory) -> None:
    setup = file_session_factory()
    try:
        store = SqlScheduleTemplateStore(setup)
        store.save(make_template(provider_id='dr-lee'))
        store.save(make_template(provider_id='dr-kim', slot_duration_minutes=60, buffer_minutes=0))
    finally:
        setup.close()

    results, failures = generate_for_providers(
        ['dr-lee', 'dr-kim', 'dr-lee'],
        MONDAY,
        MONDAY,
        file_session_factory,
        max_workers=2,
    )

    assert failures == []
    assert {result.provider_id: result.created for result in results} == {'dr-lee': 4, 'dr-kim': 3}


def test_generate_for_providers_reports_failures_without_stopping_others(file_session_factory) -> None:
    setup = file_session_factory()
    try:
        SqlScheduleTemplateStore(setup).save(make_template(provider_id='dr-lee'))
    finally:
        setup.close()

    results, failures = generate_for_providers(
        ['dr-lee'],
        MONDAY,
        date(2024, 12, 31),
        file_session_factory,
    )

    assert results == []
    assert [failure.provider_id for failure in failures] == ['dr-lee']


def test_generate_for_providers_isolates_unexpected_errors(file_session_factory, monkeypatch: pytest.MonkeyPatch) -> None:
    setup = file_session_factory()
    try:
        store = SqlScheduleTemplateStore(setup)
        store.save(make_template(provider_id='dr-lee'))
        store.save(make_template(provider_id='dr-kim'))
    finally:
        setup.close()

    original = SlotGenerator.generate_and_persist

    def flaky_generate(self, provider_id, start_date, end_date):
        if provider_id == 'dr-kim':
            raise RuntimeError('template cache corrupted')
        return original(self, provider_id, start_date, end_date)

    monkeypatch.setattr(SlotGenerator, 'generate_and_persist', flaky_generate)

    results, failures = generate_for_providers(['dr-kim', 'dr-lee'], MONDAY, MONDAY, file_session_factory)

    assert [(result.provider_id, result.created) for result in results] == [('dr-lee', 4)]
    assert [(failure.provider_id, failure.reason) for failure in failures] == [('dr-kim', 'template cache corrupted')]
