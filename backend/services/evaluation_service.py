# services/evaluation_service.py
"""
Question generation and answer evaluation on top of Gemini.

Both calls return validated models or raise. There is no default evaluation:
a response that cannot be parsed is a retryable failure.
"""
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from models.interview import (
    Answer,
    Evaluation,
    EvaluationSubmission,
    Question,
    QuestionScore,
    QuestionType,
    StageDefinition,
    StageKind,
    TranscriptRole,
)
from models.session import CandidateProfile
from services.errors import EvaluationError, QuestionGenerationError
from services.gemini_service import GeminiService, LLMError
from utils.logger import get_logger

logger = get_logger("EvaluationService")

DEMO_CRITERIA = {
    "teachingClarity": "Teaching Clarity",
    "subjectKnowledge": "Subject Knowledge",
    "presentationSkills": "Presentation Skills",
    "timeManagement": "Time Management",
    "overallPotential": "Overall Teaching Potential",
}


def _profile_block(profile: Optional[CandidateProfile]) -> str:
    if profile is None:
        return "No profile information available."
    return f"""Candidate Profile:
- Name: {profile.full_name or 'Not specified'}
- Current Role: {profile.preferred_role or 'Not specified'}
- Experience Level: {profile.experience_level or 'Entry Level'}
- Skills: {', '.join(profile.skills) or 'Not specified'}
- Highest Qualification: {profile.highest_qualification or 'Not specified'}
- Primary Subject: {profile.primary_subject or 'General Knowledge'}
- Classes Handled: {profile.classes_handled or 'Not specified'}
- Segment: {profile.segment or 'Education'}"""


def build_question_prompt(stage: StageDefinition, profile: Optional[CandidateProfile]) -> str:
    subject = profile.primary_subject if profile and profile.primary_subject else None
    focus = (
        f"Focus questions specifically on {subject} topics, concepts, and teaching methodologies for this subject."
        if subject else "Focus on general teaching aptitude and pedagogical skills."
    )
    return f"""You are an expert HR interviewer and technical recruiter.
Generate {stage.question_count} interview questions for the "{stage.name}" stage.

Stage Description: {stage.description}

{_profile_block(profile)}

IMPORTANT: {focus}

Requirements:
1. Questions should be directly related to the candidate's primary subject: {subject or 'General'}
2. Include subject-specific concepts, theories, and teaching approaches
3. Mix of difficulty levels (easy to challenging)
4. For multiple choice questions, provide 4 options
5. Include expected key points for text answers
6. Make questions specific to the candidate's experience level and background

Return JSON only:
{{
  "questions": [
    {{
      "question": "string",
      "type": "text" | "multiple_choice" | "scenario",
      "options": ["string"],
      "category": "string",
      "expectedPoints": ["string"]
    }}
  ]
}}

Generate exactly {stage.question_count} questions."""


def build_answers_prompt(stage: StageDefinition, questions: List[Question], answers: List[Answer],
                         profile: Optional[CandidateProfile]) -> str:
    by_id = {q.question_id: q for q in questions}
    pairs = []
    for i, answer in enumerate(answers, start=1):
        question = by_id.get(answer.question_id)
        expected = f"Expected Points: {', '.join(question.expected_points)}\n" if question and question.expected_points else ""
        response = answer.response or "No answer provided"
        note = " (time ran out)" if answer.timed_out else ""
        pairs.append(
            f"Question {i} [id={answer.question_id}]: {answer.prompt or (question.prompt if question else '')}\n"
            f"{expected}Candidate Answer{note}: {response}"
        )
    qa = "\n\n".join(pairs)
    return f"""You are an expert HR interviewer and technical recruiter. Evaluate candidate answers objectively.
Evaluate the following interview answers for the "{stage.name}" stage.

Passing Score Required: {stage.passing_score}%

Candidate Profile:
- Name: {profile.full_name if profile else 'Not specified'}
- Experience Level: {(profile.experience_level if profile else None) or 'Entry Level'}

Questions and Answers:
{qa}

Evaluation Criteria:
1. Relevance and completeness of answers
2. Communication clarity
3. Technical accuracy (if applicable)
4. Professionalism and confidence
5. Specific examples and experiences mentioned

Return JSON only:
{{
  "overallScore": number (0-100),
  "passed": boolean (score >= {stage.passing_score}),
  "feedback": "constructive feedback",
  "strengths": ["2-4 points"],
  "improvements": ["2-4 points"],
  "questionScores": [{{"questionId": "string", "score": number, "feedback": "string"}}]
}}"""


def build_demo_prompt(stage: StageDefinition, submission: EvaluationSubmission,
                      profile: Optional[CandidateProfile]) -> str:
    duration = submission.duration_seconds or 0
    spoken = [m.content for m in submission.transcript if m.role == TranscriptRole.CANDIDATE]
    transcript = "\n".join(f"- {line}" for line in spoken) if spoken else "No speech was transcribed."
    criteria = "\n".join(
        f'    "{key}": {{ "score": number, "feedback": "string" }},' for key in DEMO_CRITERIA
    ).rstrip(",")
    return f"""You are an expert teaching skills evaluator. Always respond with valid JSON only.
A candidate has just completed a teaching demonstration on the topic: "{submission.demo_topic or 'Not specified'}".

Candidate Profile:
- Name: {profile.full_name if profile else 'Not specified'}
- Subject Expertise: {(profile.primary_subject if profile else None) or 'Not specified'}
- Experience Level: {(profile.experience_level if profile else None) or 'Not specified'}
- Classes Handled: {(profile.classes_handled if profile else None) or 'Not specified'}

Demo Duration: {duration // 60} minutes {duration % 60} seconds
Recording: {submission.recording_ref or 'not available'}

What the candidate said during the demo:
{transcript}

Evaluate teaching clarity, subject knowledge, presentation skills, time management
and overall teaching potential, each scored 0-100 with specific feedback.
Passing Score Required: {stage.passing_score}%

Return JSON only:
{{
  "overallScore": number,
  "criteria": {{
{criteria}
  }},
  "strengths": ["3-5 points"],
  "improvements": ["3-5 points"],
  "recommendation": "Excellent" | "Good" | "Needs Improvement" | "Not Ready",
  "detailedFeedback": "string"
}}"""


def _as_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value if v]


def _question_type(raw: Any) -> QuestionType:
    try:
        return QuestionType(str(raw).lower())
    except ValueError:
        return QuestionType.TEXT


class EvaluationService:
    def __init__(self, llm: Optional[GeminiService] = None):
        self.llm = llm or GeminiService()

    async def generate_questions(self, stage: StageDefinition,
                                 profile: Optional[CandidateProfile]) -> List[Question]:
        try:
            data = await self.llm.generate_json(build_question_prompt(stage, profile), temperature=0.7)
        except LLMError as e:
            raise QuestionGenerationError(str(e), stage_order=stage.order) from e

        raw = data.get("questions") if isinstance(data, dict) else data
        if not isinstance(raw, list) or not raw:
            raise QuestionGenerationError("Model returned no questions", stage_order=stage.order)

        questions = []
        for i, item in enumerate(raw[: stage.question_count or None], start=1):
            if isinstance(item, str):
                item = {"question": item}
            prompt = (item.get("question") or item.get("prompt") or "").strip()
            if not prompt:
                continue
            questions.append(Question(
                question_id=f"s{stage.order}-q{i}",
                prompt=prompt,
                type=_question_type(item.get("type", "text")),
                choices=_as_list(item.get("options")),
                category=item.get("category") or "general",
                expected_points=_as_list(item.get("expectedPoints")),
            ))

        if not questions:
            raise QuestionGenerationError("Model returned no usable questions", stage_order=stage.order)
        logger.info(f"✅ Generated {len(questions)} questions for stage {stage.order}")
        return questions

    async def evaluate(self, stage: StageDefinition, submission: EvaluationSubmission,
                       profile: Optional[CandidateProfile]) -> Evaluation:
        if stage.kind == StageKind.LIVE_DEMO:
            prompt = build_demo_prompt(stage, submission, profile)
        else:
            prompt = build_answers_prompt(stage, submission.questions, submission.answers, profile)

        try:
            data = await self.llm.generate_json(prompt, temperature=0.3)
        except LLMError as e:
            raise EvaluationError(str(e), stage_order=stage.order) from e

        if not isinstance(data, dict):
            raise EvaluationError("Evaluation response is not an object", stage_order=stage.order)

        try:
            evaluation = self._to_evaluation(stage, data)
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise EvaluationError(f"Malformed evaluation: {e}", stage_order=stage.order) from e

        logger.info(f"📝 Stage {stage.order} evaluated: score={evaluation.score} passed={evaluation.passed}")
        return evaluation

    def _to_evaluation(self, stage: StageDefinition, data: Dict[str, Any]) -> Evaluation:
        score = float(data["overallScore"])
        if stage.kind == StageKind.LIVE_DEMO:
            criteria = data.get("criteria") or {}
            question_scores = [
                QuestionScore(question_id=key, score=float(c.get("score", 0)), feedback=c.get("feedback", ""))
                for key, c in criteria.items() if isinstance(c, dict)
            ]
            feedback = data.get("detailedFeedback") or data.get("feedback") or ""
        else:
            question_scores = [
                QuestionScore(
                    question_id=str(q.get("questionId") or q.get("question_id") or i),
                    score=float(q.get("score", 0)),
                    feedback=q.get("feedback", ""),
                )
                for i, q in enumerate(data.get("questionScores") or [], start=1)
                if isinstance(q, dict)
            ]
            feedback = data.get("feedback") or ""

        return Evaluation(
            score=score,
            passed=bool(data.get("passed", score >= stage.passing_score)),
            feedback=feedback,
            strengths=_as_list(data.get("strengths")),
            improvements=_as_list(data.get("improvements")),
            question_scores=question_scores,
        )
