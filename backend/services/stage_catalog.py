# services/stage_catalog.py
"""Static, ordered catalog of mock-interview stages."""

from typing import Dict, List, Optional, Sequence

from models.interview import SlotForm, StageDefinition, StageKind
from services.errors import StageNotFoundError


DEFAULT_STAGES: List[StageDefinition] = [
    StageDefinition(
        order=1,
        name="Interview Instructions",
        description="Receive detailed interview process instructions and guidelines.",
        kind=StageKind.INFORMATIONAL,
        auto_progress_after_completion=True,
    ),
    StageDefinition(
        order=2,
        name="Technical Assessment Slot Booking",
        description="Book your preferred slot for the Technical Assessment round.",
        kind=StageKind.SLOT_BOOKING,
        requires_slot_booking=True,
        auto_progress_after_completion=False,
        slot_form=SlotForm.BASIC,
    ),
    StageDefinition(
        order=3,
        name="Technical Assessment",
        description="Role-specific technical questions to assess your domain knowledge and problem-solving skills.",
        kind=StageKind.TIMED_ASSESSMENT,
        question_count=8,
        time_per_question=150,
        passing_score=70,
        auto_progress_after_completion=False,
    ),
    StageDefinition(
        order=4,
        name="Demo Slot Booking",
        description="Book your preferred interview slot for the Demo Round.",
        kind=StageKind.SLOT_BOOKING,
        requires_slot_booking=True,
        auto_progress_after_completion=False,
        slot_form=SlotForm.EXTENDED,
    ),
    StageDefinition(
        order=5,
        name="Demo Round",
        description="Live teaching demonstration where AI evaluates your teaching clarity, subject knowledge, and presentation skills.",
        kind=StageKind.LIVE_DEMO,
        question_count=1,
        time_per_question=600,
        passing_score=65,
        auto_progress_after_completion=True,
    ),
    StageDefinition(
        order=6,
        name="Demo Feedback",
        description="View detailed feedback metrics and AI evaluation of your demo teaching performance.",
        kind=StageKind.FEEDBACK_REVIEW,
        reviews_stage_order=5,
        auto_progress_after_completion=True,
    ),
    StageDefinition(
        order=7,
        name="Final Review (HR)",
        description="HR round - Submit required documents for verification and final review.",
        kind=StageKind.DOCUMENT_REVIEW,
        required_documents=["identity_proof", "highest_qualification_certificate"],
        auto_progress_after_completion=True,
    ),
    StageDefinition(
        order=8,
        name="All Reviews",
        description="View comprehensive summary of all interview stages, scores, and final assessment.",
        kind=StageKind.SUMMARY,
        auto_progress_after_completion=False,
    ),
]


class StageCatalog:
    """Immutable lookup over stage definitions, validated on construction."""

    def __init__(self, stages: Sequence[StageDefinition] = DEFAULT_STAGES):
        ordered = sorted(stages, key=lambda s: s.order)
        if not ordered:
            raise ValueError("stage catalog is empty")
        expected = list(range(1, len(ordered) + 1))
        if [s.order for s in ordered] != expected:
            raise ValueError(f"stage orders must be unique and contiguous from 1, got {[s.order for s in ordered]}")
        for stage in ordered:
            if stage.kind == StageKind.FEEDBACK_REVIEW:
                ref = stage.reviews_stage_order
                if ref is None or ref >= stage.order:
                    raise ValueError(f"feedback stage {stage.order} must review an earlier stage")
            if stage.kind == StageKind.SLOT_BOOKING and stage.auto_progress_after_completion:
                # booked-stage invitations are always sent by an explicit action
                raise ValueError(f"slot booking stage {stage.order} cannot auto-notify")
        self._stages: Dict[int, StageDefinition] = {s.order: s for s in ordered}

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self):
        return iter(self.all())

    def all(self) -> List[StageDefinition]:
        return [self._stages[o] for o in sorted(self._stages)]

    def get(self, order: int) -> StageDefinition:
        try:
            return self._stages[order]
        except KeyError:
            raise StageNotFoundError(f"Unknown stage {order}", stage_order=order) from None

    def next_after(self, order: int) -> Optional[StageDefinition]:
        return self._stages.get(order + 1)

    @property
    def last_order(self) -> int:
        return max(self._stages)


default_catalog = StageCatalog()
