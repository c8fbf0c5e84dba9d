"""
Heuristic question selection: pick the questions whose keywords overlap most
with a job description.
"""

from typing import Any, Dict, List, Sequence

PREFERRED_ROLE = "software"


def select_questions(
    job_description: str,
    questions: Sequence[Dict[str, Any]],
    count: int = 2,
) -> List[Dict[str, Any]]:
    """Select questions matching a job description.

    Questions are ranked by how many of their keywords appear in the job
    description (ties keep bank order). When nothing overlaps, questions for
    software roles are preferred, then the bank order fills the remainder.

    Args:
        job_description: Free text of the job posting
        questions: Public question dicts (id, role, question, keywords, ...)
        count: Number of questions to return

    Returns:
        Up to `count` questions
    """
    if count <= 0 or not questions:
        return []

    jd = (job_description or "").lower()
    scored = []
    for position, q in enumerate(questions):
        keywords = q.get("keywords") or []
        matches = [k for k in keywords if str(k).lower() in jd]
        scored.append((len(matches), position, q))

    scored.sort(key=lambda item: (-item[0], item[1]))
    if scored[0][0] > 0:
        return [q for _, _, q in scored[:count]]

    preferred = [q for q in questions if PREFERRED_ROLE in str(q.get("role", "")).lower()]
    selected = preferred[:count]
    for q in questions:
        if len(selected) >= count:
            break
        if q not in selected:
            selected.append(q)
    return selected
