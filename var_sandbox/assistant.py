"""
AI Assistant
============
Prompt construction and validated response parsing for the risk
register's AI features:
- Risk generation from a business context
- Control suggestions with DIME scores
- Incident-to-risk linking
- External event relevance analysis

Every operation takes the completion client as an argument and returns
a ``ParseResult``: ``Parsed`` with validated models, or
``ParseFailure`` carrying the raw model text.
"""

import logging
from typing import List, Literal, Optional, Protocol, Sequence

from pydantic import BaseModel, Field

from var_sandbox.llm import ChatMessage, ParseFailure, Parsed, ParseResult, parse_json_response

logger = logging.getLogger(__name__)

MAX_GENERATED_RISKS: int = 20

Severity = Literal["Critical", "High", "Medium", "Low", "Very Low"]


class CompletionClient(Protocol):
    def ask(self, prompt: str, history: Sequence[ChatMessage] = ()) -> str:
        ...


# ─────────────────────────────────────────────────────────────
# Models
# ─────────────────────────────────────────────────────────────

class RiskContext(BaseModel):
    industry: str = Field(min_length=1)
    business_unit: Optional[str] = None
    risk_category: Optional[str] = None
    additional_context: Optional[str] = None


class GeneratedRisk(BaseModel):
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    category: str = Field(min_length=1)
    severity: Severity


class RiskSummary(BaseModel):
    risk_code: str
    risk_title: str
    category: str
    risk_description: Optional[str] = None
    likelihood_inherent: int = Field(default=3, ge=1, le=6)
    impact_inherent: int = Field(default=3, ge=1, le=6)


class ControlSuggestion(BaseModel):
    """A proposed control with DIME scores (0-3 each)."""

    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    design: int = Field(ge=0, le=3)
    implementation: int = Field(ge=0, le=3)
    monitoring: int = Field(ge=0, le=3)
    effectiveness: int = Field(ge=0, le=3)

    @property
    def dime_average(self) -> float:
        return (self.design + self.implementation + self.monitoring + self.effectiveness) / 4


class Incident(BaseModel):
    incident_code: str
    title: str
    description: str
    category: Optional[str] = None
    occurred_at: Optional[str] = None


class IncidentRiskLink(BaseModel):
    risk_code: str = Field(min_length=1)
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str


class ExternalEvent(BaseModel):
    title: str
    description: str
    source_name: str
    published_date: str
    event_category: str


class EventRiskAnalysis(BaseModel):
    is_relevant: bool
    reasoning: str
    likelihood_change: int = Field(ge=-2, le=2)
    confidence: float = Field(ge=0.0, le=1.0)
    suggested_controls: List[str] = Field(default_factory=list)
    impact_assessment: str


# ─────────────────────────────────────────────────────────────
# Prompts
# ─────────────────────────────────────────────────────────────

def build_risk_generation_prompt(context: RiskContext, count: int) -> str:
    lines = [
        "You are an enterprise risk management specialist.",
        f"Identify {count} distinct risks for an organization in the "
        f"{context.industry} industry.",
    ]
    if context.business_unit:
        lines.append(f"Business unit: {context.business_unit}")
    if context.risk_category:
        lines.append(f"Focus on the {context.risk_category} risk category.")
    if context.additional_context:
        lines.append(f"Additional context: {context.additional_context}")
    lines += [
        "",
        "OUTPUT FORMAT (JSON array only, no explanation):",
        '[{"title": "...", "description": "2-3 sentences", '
        '"category": "...", "severity": "Critical|High|Medium|Low|Very Low"}]',
    ]
    return "\n".join(lines)


def build_control_prompt(risk: RiskSummary, existing_controls: Sequence[str] = ()) -> str:
    existing = "\n".join(f"- {c}" for c in existing_controls) or "- none recorded"
    return f"""You are an internal control specialist.

RISK:
- Code: {risk.risk_code}
- Title: {risk.risk_title}
- Category: {risk.category}
- Description: {risk.risk_description or 'N/A'}
- Inherent likelihood / impact: {risk.likelihood_inherent} / {risk.impact_inherent}

EXISTING CONTROLS:
{existing}

TASK:
Suggest 3 additional controls that reduce this risk. Rate each on the
DIME scale (0 = absent, 3 = strong) for Design, Implementation,
Monitoring and Effectiveness as you expect them once implemented.

OUTPUT FORMAT (JSON array only, no explanation):
[{{"name": "...", "description": "...", "design": 0-3,
  "implementation": 0-3, "monitoring": 0-3, "effectiveness": 0-3}}]"""


def build_incident_link_prompt(incident: Incident, risks: Sequence[RiskSummary]) -> str:
    register = "\n".join(
        f"- {r.risk_code}: {r.risk_title} ({r.category})" for r in risks
    )
    return f"""You are a risk analyst linking operational incidents to the risk register.

INCIDENT:
- Code: {incident.incident_code}
- Title: {incident.title}
- Category: {incident.category or 'N/A'}
- Date: {incident.occurred_at or 'N/A'}
- Description: {incident.description}

RISK REGISTER:
{register}

TASK:
List the risks this incident is evidence of. Use only risk codes from the
register. Return an empty array if none apply.

OUTPUT FORMAT (JSON array only, no explanation):
[{{"risk_code": "...", "confidence": 0.0-1.0, "reasoning": "1-2 sentences"}}]"""


def build_event_relevance_prompt(risk: RiskSummary, event: ExternalEvent) -> str:
    return f"""You are a risk intelligence analyst.

RISK BEING ANALYZED:
- Code: {risk.risk_code}
- Title: {risk.risk_title}
- Category: {risk.category}
- Current Likelihood: {risk.likelihood_inherent}
- Description: {risk.risk_description or 'N/A'}

RECENT EVENT:
- Title: {event.title}
- Description: {event.description}
- Source: {event.source_name}
- Date: {event.published_date}
- Category: {event.event_category}

TASK:
Analyze whether this event changes the likelihood of the risk occurring.
Be conservative: most events do not affect most risks. Confidence above
0.7 only for clear, direct impacts.

OUTPUT FORMAT (JSON only, no explanation):
{{"is_relevant": true|false, "reasoning": "2-3 sentences",
  "likelihood_change": -2..2, "confidence": 0.0-1.0,
  "suggested_controls": ["..."], "impact_assessment": "..."}}"""


# ─────────────────────────────────────────────────────────────
# Operations
# ─────────────────────────────────────────────────────────────

def generate_risks(
    client: CompletionClient,
    context: RiskContext,
    count: int = 5,
) -> ParseResult:
    """Ask the model for ``count`` risks relevant to ``context``."""
    if not 1 <= count <= MAX_GENERATED_RISKS:
        raise ValueError(f"count must be between 1 and {MAX_GENERATED_RISKS}, got {count}")

    text = client.ask(build_risk_generation_prompt(context, count))
    result = parse_json_response(text, List[GeneratedRisk])
    if isinstance(result, Parsed):
        logger.info("Generated %d risk(s) for %s", len(result.value), context.industry)
    return result


def suggest_controls(
    client: CompletionClient,
    risk: RiskSummary,
    existing_controls: Sequence[str] = (),
) -> ParseResult:
    text = client.ask(build_control_prompt(risk, existing_controls))
    return parse_json_response(text, List[ControlSuggestion])


def link_incident_to_risks(
    client: CompletionClient,
    incident: Incident,
    risks: Sequence[RiskSummary],
) -> ParseResult:
    """
    Suggest register risks an incident relates to.

    Links to codes that are not in ``risks`` are rejected as a parse
    failure rather than dropped.
    """
    if not risks:
        return Parsed([])

    text = client.ask(build_incident_link_prompt(incident, risks))
    result = parse_json_response(text, List[IncidentRiskLink])
    if isinstance(result, ParseFailure):
        return result

    known = {r.risk_code for r in risks}
    unknown = [link.risk_code for link in result.value if link.risk_code not in known]
    if unknown:
        return ParseFailure(
            raw_text=text,
            reason=f"response referenced unknown risk code(s): {', '.join(unknown)}",
        )
    return result


def analyze_event_relevance(
    client: CompletionClient,
    risk: RiskSummary,
    event: ExternalEvent,
) -> ParseResult:
    text = client.ask(build_event_relevance_prompt(risk, event))
    return parse_json_response(text, EventRiskAnalysis)
