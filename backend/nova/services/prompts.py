"""
System prompt assembly for Nova.

The coach persona is fixed; learner profile, recalled memories and
retrieved knowledge are appended as sections when present.
"""

from collections.abc import Sequence

from nova.domain import LearnerProfile, Memory, MemoryCategory

COACH_PROMPT = """You are Nova, an AI learning coach. You help developers grow their technical skills through conversation.

## Your Voice
You sound like a senior developer friend who has been through the trenches. Conversational, not formal. You get straight to the point without being curt. You care about people understanding things deeply, not just getting answers to copy-paste.

You have opinions and you share them. When something is a bad idea, you say so. When there is nuance, you explain the trade-offs honestly and say what the choice actually depends on.

## What NOT to do
- No "Great question!" or "I'd be happy to help!" - just help
- No corporate speak
- No bullet point soup when a few sentences would be clearer
- No forced summaries or "Let me know if you have questions!"

## How to Help
- Give your actual take first, then explain the reasoning
- Use concrete examples from real development scenarios
- When there are multiple valid approaches, explain when you would pick each one
- Ask follow-up questions when the context would change your answer
- If you don't know, say so
- When knowledge base content is provided or a search tool returns results, treat it as your primary source"""

# Section headings, in the order memories are listed
MEMORY_HEADINGS: dict[MemoryCategory, str] = {
    MemoryCategory.CURRENT_FOCUS: "Current focus",
    MemoryCategory.PREFERRED_EXAMPLES: "Preferred examples",
    MemoryCategory.STRUGGLE_IDENTIFIED: "Struggles",
    MemoryCategory.STRENGTH_DEMONSTRATED: "Strengths",
    MemoryCategory.TOPIC_DISCUSSED: "Topics discussed before",
    MemoryCategory.CONCEPT_EXPLAINED: "Concepts already explained",
    MemoryCategory.QUESTION_ASKED: "Questions asked before",
}


def build_learner_section(profile: LearnerProfile | None) -> str:
    if profile is None or profile.is_empty:
        return ""

    lines = ["## About This Learner"]
    if profile.current_role:
        lines.append(f"- Role: {profile.current_role}")
    if profile.experience_years is not None:
        lines.append(f"- Experience: {profile.experience_years} years")
    if profile.primary_tech_stack:
        lines.append(f"- Tech stack: {profile.primary_tech_stack}")
    if profile.current_project:
        lines.append(f"- Current project: {profile.current_project}")
    if profile.learning_goals:
        lines.append(f"- Learning goals: {profile.learning_goals}")
    if profile.learning_style:
        lines.append(f"- Learning style: {profile.learning_style}")
    if profile.preferred_pace:
        lines.append(f"- Preferred pace: {profile.preferred_pace}")
    if profile.identified_strengths:
        lines.append(f"- Strengths: {profile.identified_strengths}")
    if profile.identified_struggles:
        lines.append(f"- Struggles: {profile.identified_struggles}")
    lines.append("")
    lines.append("Adapt depth, pace and examples to this learner.")
    return "\n".join(lines)


def build_memory_section(memories: Sequence[Memory]) -> str:
    """Group memories by category; within a category keep the given order."""
    if not memories:
        return ""

    lines = ["## What You Remember About This Learner"]
    for category, heading in MEMORY_HEADINGS.items():
        items = [m for m in memories if m.category == category]
        if not items:
            continue
        lines.append(f"### {heading}")
        lines.extend(f"- {m.content}" for m in items)
    lines.append("")
    lines.append("Use these memories naturally. Don't recite them back.")
    return "\n".join(lines)


def build_system_prompt(
    profile: LearnerProfile | None,
    memories: Sequence[Memory],
    knowledge: str | None = None,
) -> str:
    """Full system prompt for one chat turn. Deterministic for equal inputs."""
    sections = [COACH_PROMPT, build_learner_section(profile), build_memory_section(memories)]
    if knowledge:
        sections.append("## Relevant Knowledge\n" + knowledge.rstrip())
    return "\n\n".join(section for section in sections if section)
