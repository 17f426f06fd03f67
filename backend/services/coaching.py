# services/coaching.py
"""Elapsed-time coaching cues for the live teaching demo."""
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class CoachingCue:
    threshold: int   # seconds since the demo started
    text: str        # on-screen text
    voice: str       # what the voice agent is asked to say


DEMO_COACHING_SCHEDULE: Tuple[CoachingCue, ...] = (
    CoachingCue(0, "Welcome! Start by introducing yourself and the topic you'll be teaching today.",
                "Welcome! Please start by introducing yourself and the topic you will be teaching today."),
    CoachingCue(30, "Great start! Now explain why this topic is important and what students will learn.",
                "Great start! Now explain why this topic is important and what students will learn."),
    CoachingCue(60, "Begin explaining the core concept. Remember to speak clearly and at a steady pace.",
                "Now begin explaining the core concept. Remember to speak clearly and at a steady pace."),
    CoachingCue(120, "Excellent! Use an example or analogy to help students understand better.",
                "Excellent! Try using an example or analogy to help students understand better."),
    CoachingCue(180, "You're doing well! Try to engage as if students are present - ask rhetorical questions.",
                "You're doing well! Try to engage as if students are present. Ask some rhetorical questions."),
    CoachingCue(240, "If applicable, demonstrate a practical application of the concept.",
                "If applicable, demonstrate a practical application of the concept you're teaching."),
    CoachingCue(300, "Halfway there! Summarize key points covered so far before continuing.",
                "You're halfway there! Take a moment to summarize the key points you've covered so far."),
    CoachingCue(360, "Cover any additional details or advanced aspects of your topic.",
                "Now cover any additional details or advanced aspects of your topic."),
    CoachingCue(420, "Address common mistakes or misconceptions students might have.",
                "Address any common mistakes or misconceptions that students might have about this topic."),
    CoachingCue(480, "Start wrapping up. Provide a brief summary of everything you've taught.",
                "Start wrapping up now. Provide a brief summary of everything you've taught."),
    CoachingCue(540, "Final minute! Conclude with key takeaways and encourage practice.",
                "Final minute! Conclude with your key takeaways and encourage students to practice."),
    CoachingCue(570, "Excellent work! Feel free to end your demo when ready.",
                "Excellent work! You can end your demo whenever you're ready. Thank you for your presentation!"),
)

CLOSING_MESSAGE = (
    "Thank you so much for your wonderful teaching demonstration! You did a great job. "
    "The demo is now complete. Goodbye and best of luck!"
)


@dataclass(frozen=True)
class CoachingSchedule:
    """
    Tracks which cues have been delivered.

    `due(elapsed)` returns every undelivered cue whose threshold has been reached,
    in ascending threshold order, together with the advanced schedule. Feeding a
    non-decreasing elapsed sequence therefore delivers each reached cue exactly
    once and never skips one, even when a tick jumps past several thresholds.
    """

    cues: Tuple[CoachingCue, ...] = DEMO_COACHING_SCHEDULE
    delivered: int = 0

    def __post_init__(self):
        thresholds = [c.threshold for c in self.cues]
        if thresholds != sorted(set(thresholds)):
            raise ValueError("coaching thresholds must be strictly increasing")

    def due(self, elapsed: float) -> Tuple["CoachingSchedule", List[CoachingCue]]:
        pending = []
        index = self.delivered
        while index < len(self.cues) and self.cues[index].threshold <= elapsed:
            pending.append(self.cues[index])
            index += 1
        if not pending:
            return self, []
        return CoachingSchedule(cues=self.cues, delivered=index), pending

    @property
    def current(self) -> Optional[CoachingCue]:
        return self.cues[self.delivered - 1] if self.delivered else None

    @property
    def exhausted(self) -> bool:
        return self.delivered >= len(self.cues)


def schedule_from(pairs: Sequence[Tuple[int, str]]) -> CoachingSchedule:
    """Build a schedule from (threshold, text) pairs, reusing the text as the voice line."""
    return CoachingSchedule(cues=tuple(CoachingCue(t, text, text) for t, text in pairs))
