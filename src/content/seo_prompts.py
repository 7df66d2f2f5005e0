"""
Prompts for city landing page copy.

Each builder returns the user prompt for one section of a page. The
benefits and FAQ prompts ask for a JSON object so the response can be
parsed with parse_json_response.
"""

import json
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, List, Optional

from integrations.ai_client import ContentGenerationError

INTRO_WORDS = 500
BENEFIT_COUNT = 10
FAQ_COUNT = 15

COPYWRITER_SYSTEM = (
    "You are a professional copywriter specializing in tax services. "
    "Output only the final content, no reasoning or explanations."
)
JSON_SYSTEM = "You are a tax services marketing expert. Output only valid JSON, no markdown."

SERVICE_DESCRIPTIONS = {
    "personal": "personal tax preparation and filing services",
    "business": "comprehensive business tax services and accounting",
    "irs_resolution": "IRS tax problem resolution and debt relief",
    "tax_planning": "strategic tax planning and optimization",
}


@dataclass
class CityData:
    name: str
    state: str
    state_code: str
    slug: str
    population: int = 0
    neighborhoods: List[str] = field(default_factory=list)
    industries: List[str] = field(default_factory=list)
    landmarks: List[str] = field(default_factory=list)
    irs_office: Optional[str] = None
    has_state_tax: bool = True
    state_tax_rate: Optional[str] = None

    @classmethod
    def from_model(cls, city) -> "CityData":
        return cls(
            name=city.name,
            state=city.state,
            state_code=city.state_code,
            slug=city.slug,
            population=city.population or 0,
            neighborhoods=list(city.neighborhoods or []),
            industries=list(city.industries or []),
            landmarks=list(city.landmarks or []),
            irs_office=city.irs_office,
            has_state_tax=city.has_state_tax,
            state_tax_rate=city.state_tax_rate,
        )


@dataclass
class TaxServiceSpec:
    name: str
    service_type: str = "personal"
    starting_price: Optional[Decimal] = None
    average_refund: Optional[Decimal] = None
    turnaround: Optional[str] = None
    specialties: List[str] = field(default_factory=list)

    @classmethod
    def from_campaign(cls, campaign) -> "TaxServiceSpec":
        return cls(
            name=campaign.service_name,
            service_type=campaign.service_type or "personal",
            starting_price=campaign.starting_price,
            average_refund=campaign.average_refund,
            turnaround=campaign.turnaround,
            specialties=list(campaign.specialties or []),
        )


def _local_context(city: CityData) -> str:
    lines = []
    if city.neighborhoods:
        lines.append(f"Neighborhoods: {', '.join(city.neighborhoods[:5])}")
    if city.industries:
        lines.append(f"Major industries: {', '.join(city.industries[:5])}")
    if city.landmarks:
        lines.append(f"Landmarks: {', '.join(city.landmarks[:3])}")
    if city.irs_office:
        lines.append(f"Nearest IRS office: {city.irs_office}")
    if city.has_state_tax:
        rate = f" ({city.state_tax_rate})" if city.state_tax_rate else ""
        lines.append(f"{city.state} has a state income tax{rate}")
    else:
        lines.append(f"{city.state} has no state income tax")
    return "\n".join(lines)


def _service_facts(service: TaxServiceSpec) -> str:
    lines = [f"Service: {service.name}"]
    if service.starting_price is not None:
        lines.append(f"Price: starting at ${service.starting_price}")
    if service.average_refund is not None:
        lines.append(f"Average refund: ${service.average_refund}")
    if service.turnaround:
        lines.append(f"Turnaround: {service.turnaround}")
    if service.specialties:
        lines.append(f"Specialties: {', '.join(service.specialties)}")
    return "\n".join(lines)


def build_intro_prompt(city: CityData, service: TaxServiceSpec) -> str:
    description = SERVICE_DESCRIPTIONS.get(service.service_type, "professional tax services")
    return f"""Write a professional, compelling {INTRO_WORDS}-word introduction for {description} in {city.name}, {city.state}.

{_service_facts(service)}

Local context:
{_local_context(city)}

Requirements:
- About {INTRO_WORDS} words of flowing paragraphs, no bullet points
- Focus on benefits for {city.name} residents and businesses
- Mention local context naturally
- Professional, trustworthy tone with subtle deadline urgency
- Optimized for the search "{service.name} {city.name}"

Output only the introduction text."""


def build_benefits_prompt(city: CityData, service: TaxServiceSpec) -> str:
    return f"""Generate {BENEFIT_COUNT} specific benefits of using {service.name} in {city.name}, {city.state}.

{_service_facts(service)}

Requirements:
- Each benefit is 1-2 sentences
- Mix emotional and practical benefits
- Mention {city.name} or {city.state} where relevant

Respond with a JSON object:
{{"benefits": ["Benefit 1", "Benefit 2", ...]}}"""


def build_faqs_prompt(city: CityData, service: TaxServiceSpec) -> str:
    return f"""Generate {FAQ_COUNT} frequently asked questions and answers about {service.name} for {city.name}, {city.state} residents.

Local context:
{_local_context(city)}

Requirements:
- Realistic questions {city.name} residents would ask
- Answers are 2-3 sentences
- Include {city.state} state tax information where relevant

Respond with a JSON object:
{{"faqs": [{{"question": "Q1?", "answer": "A1"}}, ...]}}"""


_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_json_response(text: str, key: str) -> Any:
    """Parse an LLM JSON reply and return the value under key."""
    cleaned = _FENCE_RE.sub("", (text or "").strip())
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ContentGenerationError(f"Invalid JSON in LLM response: {e}") from e
    if not isinstance(data, dict) or key not in data:
        raise ContentGenerationError(f"LLM response missing '{key}'")
    return data[key]
