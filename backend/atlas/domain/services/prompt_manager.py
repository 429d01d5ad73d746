"""
Prompt Template System
Jinja2 templates for URL selection, dossiers, call assistants and call analysis
"""
import logging
from typing import Dict, List

from jinja2 import BaseLoader, Environment
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class PromptTemplate(BaseModel):
    """Single prompt template"""
    name: str = Field(..., description="Template name")
    template: str = Field(..., description="Jinja2 template string")
    variables: List[str] = Field(default_factory=list, description="Required variables")

    def render(self, **kwargs) -> str:
        """Render template with provided variables"""
        env = Environment(loader=BaseLoader(), trim_blocks=True, lstrip_blocks=True)
        return env.from_string(self.template).render(**kwargs)


class PromptManager:
    """Holds the default prompt templates and renders them by name"""

    def __init__(self):
        self.templates: Dict[str, PromptTemplate] = {}
        self._load_default_templates()

    def _load_default_templates(self) -> None:
        self.templates["url_selection"] = PromptTemplate(
            name="url_selection",
            template="""Rank these website URLs by how useful they are for a sales audit of the business.

We want to understand what the business does, spot gaps, and prepare talking points for outreach.

Rules:
- Prefer the homepage, products/services/solutions, pricing, about/company, case studies or testimonials, team
- Key feature, integration or documentation pages are fine if they are core to the business
- Avoid blog posts, careers, legal/privacy and generic contact pages
- Skip URLs with query strings or anchors
- Return at most {{ max_urls }} URLs
- Use only URLs from the list below

Respond with JSON only: {"urls": [string, ...]}

URLs:
{% for page in pages %}
[{{ loop.index }}] {% if page.title %}{{ page.title }} - {% endif %}{{ page.url }}
{% endfor %}""",
            variables=["pages", "max_urls"],
        )

        self.templates["dossier"] = PromptTemplate(
            name="dossier",
            template="""Analyze this prospect's website and write a sales dossier.

SELLER:
- Company: {{ agency.company_name }}
- Core offer: {{ agency.core_offer or "Not specified" }}
- Summary: {{ agency.summary or "Not available" }}

PROSPECT:
- Company: {{ opportunity.name }}
- Qualification signals: {{ opportunity.signals | join(", ") or "None" }}
- Industry: {{ opportunity.target_vertical or "Unknown" }}
- Location: {{ opportunity.target_geography or "Unknown" }}

WEBSITE CONTENT:
{% for page in pages %}
URL: {{ page.url }}
Title: {{ page.title or "N/A" }}
Content:
{{ page.content }}

---

{% endfor %}
Include:
1. summary: 2-3 sentences on what they do, who they serve and their value proposition
2. gaps: 3-5 specific technical, marketing, operational or strategic weaknesses we could address
3. talking_points: 3-4 conversation starters tying our offer to their needs

Respond with JSON only:
{"summary": "...", "gaps": [{"key": "...", "value": "...", "source_url": "..."}], "talking_points": [{"text": "...", "source_url": "..."}]}""",
            variables=["agency", "opportunity", "pages"],
        )

        self.templates["fit_reason"] = PromptTemplate(
            name="fit_reason",
            template="""In one or two sentences, say why {{ opportunity.name }} is a good prospect for {{ agency.company_name }}.

Consider their qualification signals ({{ opportunity.signals | join(", ") or "none" }}), the gaps found and how our core offer fits.
Stay under 150 characters. Reply with the sentence only.

Business analysis: {{ summary or "Not available" }}""",
            variables=["agency", "opportunity", "summary"],
        )

        self.templates["call_system"] = PromptTemplate(
            name="call_system",
            template="""# Identity
You are a friendly, professional business development rep for "{{ agency.company_name }}". Sound human and unscripted. Your goal is a natural conversation and, if there is mutual interest, a short discovery call.

# Context
- Your company: "{{ agency.company_name }}"
- What you do: "{{ agency.core_offer or "" }}"
- Territory: {{ agency.target_geography or "their area" }}
- Prospect business: "{{ opportunity.name }}"
- Why you're calling: "{{ opportunity.fit_reason or "" }}"
- Guidelines: {{ guardrails }}
- Success stories (share only the most relevant one): {{ claims or "<none provided>" }}
- Timezone: {{ timezone }}

# Availability (internal reference)
- Availability windows: {{ windows | join(", ") if windows else "<none>" }}
- Slots you may offer: {{ slot_labels | join(", ") if slot_labels else "<none>" }}

# Booking rules
- Only offer times from the slots above
- Never agree to a time outside your availability windows
- State every time in the {{ timezone }} timezone
- Once they agree on a time, note it internally as [BOOK_SLOT: <ISO_timestamp>] and never say that marker out loud
- If nothing works, offer to follow up by email instead of confirming an unavailable time

# Conversation
1. Open briefly: introduce yourself and {{ agency.company_name }}, ask for a quick minute, mention {{ opportunity.fit_reason or "what you noticed about their online presence" }}.
2. Explain that you specialize in {{ agency.core_offer or "helping businesses like theirs grow" }} and share one success story.
3. Ask whether a 15-minute conversation would be worth it.
4. If interested, ask which day suits them, then offer two matching slots.
5. Confirm day, date, time and timezone, then wrap up warmly.
6. If they decline, thank them politely and end the call.

# Voicemail
Leave a short message: who you are, what you noticed, one success story, and that you'd love 15 minutes to talk.""",
            variables=["agency", "opportunity", "guardrails", "claims", "timezone", "windows", "slot_labels"],
        )

        self.templates["booking_analysis"] = PromptTemplate(
            name="booking_analysis",
            template="""Analyze this sales call transcript. Decide whether a meeting was booked and whether the prospect rejected the offer.

CONTEXT:
- Company: {{ agency.company_name }}
- Prospect: {{ opportunity.name }}
- Transcript:
{{ transcript }}

AVAILABLE MEETING SLOTS:
{{ slots_text or "No available slots" }}

Steps:
1. Decide whether a specific meeting time was agreed
2. If so, pick the exact slot from the list above
3. Rate your confidence from 0 to 100
4. Decide whether the prospect explicitly declined
5. Explain your reasoning

Rules:
- slotIso must exactly match one of the listed slots
- meetingBooked is true only when a specific time was explicitly agreed
- rejectionDetected is true only when the prospect clearly declined

Respond with JSON only:
{"meetingBooked": boolean, "slotIso": "YYYY-MM-DDTHH:mm:ss.sssZ" or null, "confidence": number, "reasoning": string, "rejectionDetected": boolean}""",
            variables=["agency", "opportunity", "transcript", "slots_text"],
        )

    def render(self, name: str, **kwargs) -> str:
        """
        Render a template by name.

        Raises:
            KeyError: If no template is registered under ``name``
        """
        template = self.templates.get(name)
        if template is None:
            raise KeyError(f"Unknown prompt template: {name}")
        missing = [v for v in template.variables if v not in kwargs]
        if missing:
            logger.warning(f"Template {name} rendered without: {', '.join(missing)}")
        return template.render(**kwargs)
