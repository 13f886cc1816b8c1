"""
Generated board artifacts: roster, ICP profile and persona set.

These mirror what the generation provider returns. Every list defaults to
empty so a minimal placeholder is always a valid instance.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class BoardMember(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    role: str = Field(..., min_length=1)
    company_type: str = ""
    expertise: str = ""
    personality_archetype: str = ""
    avatar_style: Optional[str] = None


class Roster(BaseModel):
    members: List[BoardMember] = Field(..., min_length=1)


class TitleGroup(BaseModel):
    department: str
    roles: List[str] = Field(default_factory=list)


class UseCaseFit(BaseModel):
    use_case: str
    description: str = ""


class SignalAttribute(BaseModel):
    category: str
    description: str = ""
    trigger_question: Optional[str] = None


class ICPProfile(BaseModel):
    titles: List[TitleGroup] = Field(default_factory=list)
    use_case_fit: List[UseCaseFit] = Field(default_factory=list)
    signals_and_attributes: List[SignalAttribute] = Field(default_factory=list)
    psychographics: List[str] = Field(default_factory=list)
    buying_triggers: List[str] = Field(default_factory=list)
    objections: List[str] = Field(default_factory=list)


class DecisionPhase(BaseModel):
    description: str = ""
    items: List[str] = Field(default_factory=list)


class DecisionMakingProcess(BaseModel):
    research: DecisionPhase = Field(default_factory=DecisionPhase)
    evaluation: DecisionPhase = Field(default_factory=DecisionPhase)
    purchase: DecisionPhase = Field(default_factory=DecisionPhase)


class Persona(BaseModel):
    persona_name: str
    persona_title: str
    buyer_type: str = ""
    age_range: str = ""
    preferred_communication_channels: List[str] = Field(default_factory=list)
    titles: List[str] = Field(default_factory=list)
    attributes: List[str] = Field(default_factory=list)
    jobs_to_be_done: List[str] = Field(default_factory=list)
    challenges: List[str] = Field(default_factory=list)
    decision_making_process: DecisionMakingProcess = Field(default_factory=DecisionMakingProcess)
    placeholder: bool = False


class PersonaSet(BaseModel):
    personas: List[Persona] = Field(default_factory=list)


class AnalysisStreamResult(BaseModel):
    """Final payload of a completed analysis stream."""

    full_text: str = ""
    research_corpus: str = ""
