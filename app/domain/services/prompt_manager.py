"""
Prompt Template System
Builds the first message and system prompt sent with an outbound call
"""
from typing import Dict, List, Optional, Sequence
from pydantic import BaseModel, Field
from jinja2 import Environment, BaseLoader
import logging

from app.domain.models.tenant import Campaign, KnowledgeDocument

logger = logging.getLogger(__name__)

KNOWLEDGE_BASE_HEADER = "--- KNOWLEDGE BASE ---"
KNOWLEDGE_BASE_FOOTER = "--- END KNOWLEDGE BASE ---"


class PromptTemplate(BaseModel):
    """Single prompt template"""
    name: str = Field(..., description="Template name")
    template: str = Field(..., description="Jinja2 template string")
    variables: List[str] = Field(default_factory=list, description="Required variables")

    def render(self, **kwargs) -> str:
        """Render template with provided variables"""
        env = Environment(loader=BaseLoader(), trim_blocks=True, lstrip_blocks=True)
        template = env.from_string(self.template)
        return template.render(**kwargs)


class PromptManager:
    """
    Manages prompt templates for outbound calls.

    The voice platform receives two pieces of context per call: the first
    thing the agent says, and the system prompt the agent runs with.
    """

    def __init__(self):
        """Initialize prompt manager with default templates"""
        self.templates: Dict[str, PromptTemplate] = {}
        self._load_default_templates()

    def _load_default_templates(self):
        """Load default prompt templates"""

        self.templates["outbound_first_message"] = PromptTemplate(
            name="outbound_first_message",
            template="Hi, this is {{ agent_name }} calling from {{ business_name }}. Do you have a quick moment?",
            variables=["agent_name", "business_name"]
        )

        # Appended after the agent's own system prompt
        self.templates["outbound_call_context"] = PromptTemplate(
            name="outbound_call_context",
            template="""{{ agent_system_prompt }}

### Outbound Call
You placed this call; the person did not call you.
1. Introduce yourself and the business in one sentence
2. State why you are calling before asking anything
3. If they are busy, offer to call back and end politely
4. If they ask not to be called again, confirm and end the call
{% if campaign_context %}

### Campaign
{{ campaign_context }}
{% endif %}
{% if knowledge_content %}
{{ knowledge_content }}
{% endif %}""",
            variables=["agent_system_prompt"]
        )

        self.templates["campaign_context"] = PromptTemplate(
            name="campaign_context",
            template="""Campaign: {{ name }}
{% if goal %}
Goal: {{ goal }}
{% endif %}
{% if description %}
Details: {{ description }}
{% endif %}""",
            variables=["name"]
        )

    def get_template(self, name: str) -> Optional[PromptTemplate]:
        """Get template by name"""
        return self.templates.get(name)

    def render_template(self, name: str, **kwargs) -> str:
        """
        Render a template by name

        Raises:
            ValueError: If template not found
        """
        template = self.get_template(name)
        if not template:
            raise ValueError(f"Template '{name}' not found")

        return template.render(**kwargs)

    def get_outbound_first_message(self, agent_name: str, business_name: str) -> str:
        return self.render_template(
            "outbound_first_message",
            agent_name=agent_name,
            business_name=business_name,
        )

    def get_outbound_call_prompt(
        self,
        agent_system_prompt: str,
        campaign_context: Optional[str] = None,
        knowledge_content: Optional[str] = None
    ) -> str:
        """
        Build the full system prompt for an outbound call.

        Args:
            agent_system_prompt: The agent's configured prompt
            campaign_context: Rendered campaign block, if the call belongs to one
            knowledge_content: Rendered knowledge base block, if the agent has documents
        """
        return self.render_template(
            "outbound_call_context",
            agent_system_prompt=(agent_system_prompt or "").strip(),
            campaign_context=campaign_context,
            knowledge_content=knowledge_content,
        ).strip()

    def build_campaign_context(self, campaign: Optional[Campaign]) -> Optional[str]:
        if campaign is None:
            return None
        return self.render_template(
            "campaign_context",
            name=campaign.name,
            goal=campaign.goal,
            description=campaign.description,
        ).strip()

    @staticmethod
    def build_knowledge_block(documents: Sequence[KnowledgeDocument]) -> Optional[str]:
        """
        Concatenate knowledge documents into one labelled block.

        Returns None when there is nothing to include, so the caller can omit
        the block entirely.
        """
        sections = [
            f"## {doc.name}\n{doc.content.strip()}"
            for doc in documents
            if doc.content and doc.content.strip()
        ]
        if not sections:
            return None

        return "\n\n" + KNOWLEDGE_BASE_HEADER + "\n" + "\n\n".join(sections) + "\n" + KNOWLEDGE_BASE_FOOTER
