import pytest

from models.interview import StageDefinition, StageKind
from services.errors import StageNotFoundError
from services.stage_catalog import StageCatalog, default_catalog


def _stage(order, kind=StageKind.INFORMATIONAL, **kwargs):
    return StageDefinition(order=order, name=f"Stage {order}", description="", kind=kind, **kwargs)


def test_default_catalog_has_eight_ordered_stages():
    orders = [s.order for s in default_catalog.all()]
    assert orders == list(range(1, 9))
    assert default_catalog.last_order == 8
    assert default_catalog.get(3).kind == StageKind.TIMED_ASSESSMENT
    assert default_catalog.get(5).kind == StageKind.LIVE_DEMO
    assert default_catalog.get(6).reviews_stage_order == 5


def test_slot_booking_stages_never_auto_progress():
    for stage in default_catalog:
        if stage.kind == StageKind.SLOT_BOOKING:
            assert stage.requires_slot_booking
            assert not stage.auto_progress_after_completion


def test_next_after_returns_none_past_the_last_stage():
    assert default_catalog.next_after(1).order == 2
    assert default_catalog.next_after(8) is None


def test_unknown_stage_raises():
    with pytest.raises(StageNotFoundError):
        default_catalog.get(42)


def test_rejects_gaps_in_order():
    with pytest.raises(ValueError):
        StageCatalog([_stage(1), _stage(3)])


def test_rejects_feedback_stage_reviewing_a_later_stage():
    with pytest.raises(ValueError):
        StageCatalog([
            _stage(1, StageKind.FEEDBACK_REVIEW, reviews_stage_order=2),
            _stage(2),
        ])


def test_rejects_auto_progressing_slot_booking():
    with pytest.raises(ValueError):
        StageCatalog([_stage(1, StageKind.SLOT_BOOKING, auto_progress_after_completion=True)])
