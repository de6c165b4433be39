"""
Audience personas.

The persona decides the register of every explanation and is handed to the
provider on explain and critique calls.
"""

from typing import Dict, List

from explainit.exceptions import UnknownPersonaError

PERSONAS: Dict[str, str] = {
    "Layman": (
        "No technical background. Needs everyday analogies, no jargon and a "
        "focus on why the idea matters in ordinary life."
    ),
    "Novice": (
        "Curious beginner who knows the basics of the wider field. Needs new "
        "terms defined on first use and small worked examples."
    ),
    "Professional": (
        "Practitioner who applies the field at work. Wants practical usage, "
        "trade-offs and common pitfalls rather than history."
    ),
    "Expert": (
        "Deep familiarity with the field. Expects precise terminology, edge "
        "cases and connections to adjacent concepts."
    ),
    "Researcher": (
        "Works at the frontier of the field. Wants formal definitions, open "
        "problems and pointers to primary literature."
    ),
}

DEFAULT_PERSONA = "Novice"


def list_personas() -> List[str]:
    return list(PERSONAS)


def get_persona(name: str) -> str:
    """Return the canonical persona name, matching case-insensitively."""
    for persona in PERSONAS:
        if persona.lower() == (name or "").strip().lower():
            return persona
    raise UnknownPersonaError(name, list_personas())


def describe_persona(name: str) -> str:
    return PERSONAS[get_persona(name)]
