"""System prompt assembly for the generation stage."""

import json
from typing import Optional

from interview_core.models import Difficulty, interview_turn_json_schema
from interview_core.pipeline.personas import Persona


# Synthetic user message for the first turn, before any answer exists.
INTERVIEW_STARTED_MARKER = "[면접 시작] 지원자가 입장했습니다."

DIFFICULTY_GUIDANCE = {
    Difficulty.EASY: "난이도: 쉬움 - 편안한 분위기에서 기본적인 경험과 동기를 확인하세요.",
    Difficulty.MEDIUM: "난이도: 보통 - 구체적인 사례와 본인의 역할을 확인하세요.",
    Difficulty.HARD: "난이도: 어려움 - 답변의 허점을 날카롭게 파고들고 근거와 수치를 요구하세요.",
}

CONDUCT_RULES = (
    "지원자의 답변을 경청하고 적절한 꼬리질문을 합니다",
    "답변이 불충분하면 더 구체적인 예시를 요청합니다",
    "답변이 좋으면 다른 관점에서 추가 질문을 합니다",
    "한국어로 자연스럽게 대화합니다",
    "질문은 1-2문장으로 간결하게 합니다",
)

STRUCTURED_INSTRUCTIONS = (
    "반드시 아래 JSON 스키마에 맞는 JSON 객체 하나만 출력하세요. "
    "다른 설명은 붙이지 마세요.\n{schema}"
)


def build_system_prompt(
    persona: Persona,
    position: str = "",
    industry: str = "",
    difficulty: Difficulty = Difficulty.MEDIUM,
    retrieval_context: Optional[str] = None,
    turn_number: Optional[int] = None,
    structured: bool = False,
) -> str:
    """
    Combine a persona template with the dynamic interview context.

    Args:
        persona: Interviewer persona
        position: Job position the candidate applied for
        industry: Industry of the position
        difficulty: Difficulty tier
        retrieval_context: Retrieved resume text, if any
        turn_number: Current turn, if known
        structured: Append JSON output instructions

    Returns:
        The full system prompt
    """
    sections = [persona.render(industry, position)]

    situation = ["현재 면접 상황:"]
    if position:
        situation.append(f"- 지원 포지션: {position}")
    situation.append(f"- 면접관: {persona.name} ({persona.role})")
    situation.append(f"- {DIFFICULTY_GUIDANCE.get(difficulty, DIFFICULTY_GUIDANCE[Difficulty.MEDIUM])}")
    if turn_number is not None:
        situation.append(f"- 현재 질문 순서: {turn_number}번째")
    sections.append("\n".join(situation))

    rules = ["중요 지침:"]
    rules.extend(f"{i}. {rule}" for i, rule in enumerate(CONDUCT_RULES, start=1))
    rules.append(
        f"{len(CONDUCT_RULES) + 1}. {persona.name}의 성격({persona.personality})에 맞게 대화합니다"
    )
    sections.append("\n".join(rules))

    if retrieval_context and retrieval_context.strip():
        sections.append(
            "참고 자료 (지원자 이력서에서 발췌):\n"
            f"{retrieval_context.strip()}\n"
            "위 내용을 바탕으로 지원자의 경험을 구체적으로 확인하세요."
        )

    if structured:
        sections.append(structured_output_instructions())

    return "\n\n".join(sections)


def structured_output_instructions() -> str:
    """Instructions asking a model without schema support for JSON."""
    schema = json.dumps(interview_turn_json_schema(), ensure_ascii=False, indent=2)
    return STRUCTURED_INSTRUCTIONS.format(schema=schema)
